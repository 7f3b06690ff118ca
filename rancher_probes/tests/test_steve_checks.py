import argparse
import unittest
from unittest.mock import Mock, patch

import requests

from rancher_probes.steve_checks import (
    PrerequisiteError,
    SteveCheckSuite,
    add_connection_args,
    best_effort,
    connect,
    run_cleanup,
)
from rancher_probes.steve_client import SteveApiError
from rancher_probes.tests.test_utils import ProbeTestUtils


def _client(body=None, error=None):
    client = Mock()
    client.url.side_effect = lambda resource, query="": f"https://rancher.test/v1/{resource}{query}"
    client.curl_command.return_value = "curl ..."
    if error is not None:
        client.list.side_effect = error
    else:
        client.list.return_value = body
    return client


@patch("builtins.print")
class TestSteveCheckSuite(unittest.TestCase):
    def test_check_count(self, mock_print):
        suite = SteveCheckSuite(_client(ProbeTestUtils.PODS_RESPONSE), "pods")

        self.assertTrue(suite.check_count("?limit=2", 2, "Limit 2"))
        self.assertFalse(suite.check_count("?limit=2", 3, "Limit 3"))
        self.assertEqual((suite.passed_count, suite.failed_count), (1, 1))
        self.assertFalse(suite.all_passed)

    def test_api_error_fails_check_only(self, mock_print):
        suite = SteveCheckSuite(_client(error=requests.ConnectionError("refused")), "pods")

        self.assertFalse(suite.check_count("", 1, "Unreachable"))
        self.assertEqual(suite.total, 1)
        mock_print.assert_any_call("❌ Failed to parse response")

    def test_check_presence(self, mock_print):
        body = {
            "data": [
                {"id": "ns/failing-job", "metadata": {"state": {"name": "error", "error": True}}}
            ]
        }
        suite = SteveCheckSuite(_client(body), "batch.jobs")

        self.assertTrue(suite.check_presence("", "ns/failing-job", True, "present"))
        self.assertFalse(suite.check_presence("", "ns/failing-job", False, "absent"))
        self.assertFalse(suite.check_presence("", "ns/other", True, "other present"))
        self.assertTrue(suite.check_presence("", "ns/other", False, "other absent"))

    def test_check_id_transform(self, mock_print):
        body = {"data": [{"id": "ns/backup-1", "_id": "test1", "metadata": {"name": "backup-1"}}]}
        suite = SteveCheckSuite(_client(body), "stable.example.com.backups")

        self.assertTrue(suite.check_id_transform("?filter=id=ns/backup-1", "ns", "ID transform"))

    def test_check_id_transform_wrong_id(self, mock_print):
        body = {"data": [{"id": "test1", "metadata": {"name": "backup-1"}}]}
        suite = SteveCheckSuite(_client(body), "stable.example.com.backups")

        self.assertFalse(suite.check_id_transform("", "ns", "ID transform"))

    def test_check_id_transform_empty(self, mock_print):
        suite = SteveCheckSuite(_client({"data": []}), "stable.example.com.backups")

        self.assertFalse(suite.check_id_transform("", "ns", "ID transform"))
        mock_print.assert_any_call("❌ Test failed: no items returned")

    def test_summary(self, mock_print):
        suite = SteveCheckSuite(_client(ProbeTestUtils.PODS_RESPONSE), "pods")
        suite.check_count("", 2, "a")
        suite.check_count("", 2, "b")
        suite.check_count("", 5, "c")

        summary = suite.summary()

        self.assertIn("Total tests run: 3", summary)
        self.assertIn("❌ c", summary)
        self.assertIn("Success rate: 66%", summary)

    def test_summary_without_checks(self, mock_print):
        suite = SteveCheckSuite(_client(error=SteveApiError("x")), "pods")
        self.assertNotIn("Success rate", suite.summary())


@patch("builtins.print")
class TestCleanup(unittest.TestCase):
    def test_yes_runs_delete(self, mock_print):
        delete_fn = Mock()
        self.assertTrue(run_cleanup("yes", delete_fn, ["kubectl delete namespace ns"]))
        delete_fn.assert_called_once_with()

    def test_no_prints_manual_hint(self, mock_print):
        delete_fn = Mock()
        self.assertFalse(run_cleanup("no", delete_fn, ["kubectl delete namespace ns"]))
        delete_fn.assert_not_called()
        mock_print.assert_any_call("kubectl delete namespace ns")

    @patch("rancher_probes.steve_checks.prompt_yes_no", return_value=None)
    def test_ask_without_terminal_skips(self, mock_prompt, mock_print):
        delete_fn = Mock()
        self.assertFalse(run_cleanup("ask", delete_fn, ["kubectl delete namespace ns"]))
        delete_fn.assert_not_called()
        mock_print.assert_any_call("Failed to get terminal input. Skipping cleanup.")

    @patch("rancher_probes.steve_checks.prompt_yes_no", return_value=True)
    def test_ask_confirmed(self, mock_prompt, mock_print):
        delete_fn = Mock()
        self.assertTrue(run_cleanup("ask", delete_fn, []))
        delete_fn.assert_called_once_with()

    def test_best_effort_reports_failure(self, mock_print):
        action = Mock(side_effect=RuntimeError("Failed to delete namespace ns: 404 Not Found"))

        best_effort("Deleting namespace...", action, "ns")

        action.assert_called_once_with("ns")
        mock_print.assert_any_call("⚠️ Failed to delete namespace ns: 404 Not Found")


@patch("builtins.print")
class TestConnect(unittest.TestCase):
    def _args(self, kubeconfig_path):
        parser = argparse.ArgumentParser()
        add_connection_args(parser)
        return parser.parse_args(["rancher.test", "token-abc:secret", str(kubeconfig_path)])

    def test_default_cleanup_mode_is_ask(self, mock_print):
        self.assertEqual(self._args("local.yaml").cleanup, "ask")

    @patch("rancher_probes.steve_checks.check_required_tools", return_value=["jq"])
    def test_missing_tool(self, mock_tools, mock_print):
        with self.assertRaises(PrerequisiteError):
            connect(self._args("local.yaml"), ("jq",))

    @patch("rancher_probes.steve_checks.k8s_utils")
    def test_missing_kubeconfig(self, mock_k8s, mock_print):
        with self.assertRaises(PrerequisiteError):
            connect(self._args("/nonexistent/local.yaml"))
        mock_k8s.configure.assert_not_called()

    @patch("rancher_probes.steve_checks.k8s_utils")
    def test_connects(self, mock_k8s, mock_print):
        mock_k8s.check_cluster_access.return_value = True
        with patch("rancher_probes.steve_checks.Path") as mock_path:
            mock_path.return_value.is_file.return_value = True
            client, _ = connect(self._args("local.yaml"))

        mock_k8s.configure.assert_called_once_with("local.yaml")
        self.assertEqual(client.base_url, "https://rancher.test")

    @patch("rancher_probes.steve_checks.k8s_utils")
    def test_unreachable_cluster(self, mock_k8s, mock_print):
        mock_k8s.check_cluster_access.return_value = False
        with patch("rancher_probes.steve_checks.Path") as mock_path:
            mock_path.return_value.is_file.return_value = True
            with self.assertRaises(PrerequisiteError):
                connect(self._args("local.yaml"))


if __name__ == "__main__":
    unittest.main()
