import unittest
from unittest.mock import Mock

import requests

from rancher_probes.steve_client import SteveApiError, SteveClient, build_query, normalize_host
from rancher_probes.tests.test_utils import ProbeTestUtils


class TestQueryHelpers(unittest.TestCase):
    def test_normalize_host(self):
        self.assertEqual(normalize_host("https://rancher.test/"), "rancher.test")
        self.assertEqual(normalize_host("http://rancher.test"), "rancher.test")
        self.assertEqual(normalize_host("rancher.test"), "rancher.test")

    def test_build_query_or_and_and(self):
        query = build_query(
            [["metadata.name=test-pod-1", "metadata.name=test-pod-2"], ["metadata.namespace=ns"]]
        )
        self.assertEqual(
            query,
            "?filter=metadata.name=test-pod-1,metadata.name=test-pod-2"
            "&filter=metadata.namespace=ns",
        )

    def test_build_query_sort_limit_and_scope(self):
        self.assertEqual(
            build_query(sort="-metadata.name", limit=2, projects_or_namespaces="ns"),
            "?sort=-metadata.name&limit=2&projectsornamespaces=ns",
        )

    def test_build_query_empty(self):
        self.assertEqual(build_query(), "")


class TestSteveClient(unittest.TestCase):
    def setUp(self):
        self.session = Mock(spec=requests.Session)
        self.response = Mock()
        self.response.json.return_value = ProbeTestUtils.PODS_RESPONSE
        self.session.get.return_value = self.response

    def test_access_key_token_uses_basic_auth(self):
        client = SteveClient("https://rancher.test/", "token-abc:secret", session=self.session)

        client.list("pods", "?limit=1")

        args, kwargs = self.session.get.call_args
        self.assertEqual(args[0], "https://rancher.test/v1/pods?limit=1")
        self.assertEqual(kwargs["auth"], ("token-abc", "secret"))
        self.assertNotIn("Authorization", kwargs["headers"])
        self.assertFalse(kwargs["verify"])

    def test_plain_token_uses_bearer_header(self):
        client = SteveClient("rancher.test", "kubeconfig-u-abc", session=self.session)

        client.list("pods")

        _, kwargs = self.session.get.call_args
        self.assertIsNone(kwargs["auth"])
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer kubeconfig-u-abc")

    def test_list_returns_collection(self):
        client = SteveClient("rancher.test", "a:b", session=self.session)

        body = client.list("pods")

        self.assertEqual(len(body["data"]), 2)
        self.response.raise_for_status.assert_called_once()

    def test_list_rejects_body_without_data(self):
        self.response.json.return_value = {"type": "error", "message": "denied"}
        client = SteveClient("rancher.test", "a:b", session=self.session)

        with self.assertRaises(SteveApiError):
            client.list("pods")

    def test_non_json_body(self):
        self.response.json.side_effect = ValueError("Expecting value")
        self.response.text = "<html>login</html>"
        client = SteveClient("rancher.test", "a:b", session=self.session)

        with self.assertRaises(SteveApiError) as cm:
            client.list("pods")
        self.assertIn("<html>login</html>", str(cm.exception))

    def test_http_error_propagates(self):
        self.response.raise_for_status.side_effect = requests.HTTPError("401 Unauthorized")
        client = SteveClient("rancher.test", "a:b", session=self.session)

        with self.assertRaises(requests.HTTPError):
            client.list("pods")

    def test_get_object(self):
        self.response.json.return_value = {"id": "ns/backup-1"}
        client = SteveClient("rancher.test", "a:b", session=self.session)

        body = client.get("stable.example.com.backups", "ns/backup-1")

        self.assertEqual(body["id"], "ns/backup-1")
        self.assertEqual(
            self.session.get.call_args[0][0],
            "https://rancher.test/v1/stable.example.com.backups/ns/backup-1",
        )

    def test_curl_command(self):
        basic = SteveClient("rancher.test", "a:b", session=self.session)
        bearer = SteveClient("rancher.test", "tok", session=self.session)
        url = basic.url("pods", "?limit=2")

        self.assertIn('-u "a:b"', basic.curl_command(url))
        self.assertIn("Authorization: Bearer tok", bearer.curl_command(url))
        self.assertTrue(basic.curl_command(url).endswith('"https://rancher.test/v1/pods?limit=2"'))

    def test_external_session_is_not_closed(self):
        with SteveClient("rancher.test", "a:b", session=self.session):
            pass
        self.session.close.assert_not_called()


if __name__ == "__main__":
    unittest.main()
