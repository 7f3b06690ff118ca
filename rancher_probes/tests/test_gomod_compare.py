import unittest
from datetime import datetime
from unittest.mock import patch

import pytest

from rancher_probes.gomod_compare import compare, main, parse_go_mod, render_report
from rancher_probes.tests.test_utils import ProbeTestUtils


class TestParseGoMod(unittest.TestCase):
    def setUp(self):
        self.rancher = parse_go_mod(ProbeTestUtils.RANCHER_GO_MOD, path="rancher.mod")
        self.webhook = parse_go_mod(ProbeTestUtils.WEBHOOK_GO_MOD, path="webhook.mod")

    def test_collects_org_lines_only(self):
        self.assertEqual(len(self.rancher.lines), 6)
        self.assertEqual(len(self.webhook.lines), 5)
        self.assertFalse(any("k8s.io" in line.text for line in self.rancher.lines))

    def test_classifies_replace_lines(self):
        self.assertEqual(
            [line.text for line in self.rancher.replaces],
            ["github.com/rancher/rke => github.com/rancher/rke v1.5.10"],
        )
        self.assertIn("github.com/rancher/lasso v0.0.0-20240430", self.rancher.lines[-1].text)
        self.assertEqual(self.rancher.lines[-1].kind, "require")

    def test_repo_names_drop_major_version_suffix(self):
        self.assertEqual(
            self.rancher.repos(), ["lasso", "norman", "rancher", "rke", "wrangler"]
        )

    def test_versions_are_unique_and_sorted(self):
        self.assertEqual(self.rancher.versions("rke"), ["v1.5.10", "v1.5.9"])
        self.assertEqual(self.webhook.versions("norman"), ["v0.0.0-20240601"])

    def test_compare_shared_repos(self):
        comparisons = compare(self.rancher, self.webhook)

        self.assertEqual([c.repo for c in comparisons], ["norman", "rke", "wrangler"])
        self.assertEqual([c.repo for c in comparisons if c.mismatch], ["norman", "rke"])

    def test_other_org(self):
        deps = parse_go_mod(ProbeTestUtils.RANCHER_GO_MOD, org="k8s.io")
        self.assertEqual(deps.repos(), ["api", "client-go"])


def test_render_report_sections():
    rancher = parse_go_mod(ProbeTestUtils.RANCHER_GO_MOD, path="rancher.mod")
    webhook = parse_go_mod(ProbeTestUtils.WEBHOOK_GO_MOD, path="webhook.mod")

    report = render_report(
        rancher, webhook, compare(rancher, webhook), generated_at=datetime(2024, 5, 1, 12, 0)
    )

    assert report.startswith("Rancher Dependencies Comparison Report - Generated at")
    assert "Version Mismatches Found (2 total):" in report
    assert "Total Rancher dependencies in rancher.mod: 6" in report
    assert "Total Rancher dependencies in webhook.mod: 5" in report
    assert report.endswith("Number of version mismatches found: 2\n")
    mismatch_section = report.split("Version Mismatches Found")[1].split("Summary:")[0]
    assert "Repository: github.com/rancher/rke" in mismatch_section
    assert "Repository: github.com/rancher/wrangler" not in mismatch_section
    assert "    github.com/rancher/rke v1.5.9" in mismatch_section


def test_main_writes_report(tmp_path, capsys):
    rancher_mod = tmp_path / "rancher.mod"
    webhook_mod = tmp_path / "webhook.mod"
    rancher_mod.write_text(ProbeTestUtils.RANCHER_GO_MOD)
    webhook_mod.write_text(ProbeTestUtils.WEBHOOK_GO_MOD)
    output = tmp_path / "report.txt"

    main([str(rancher_mod), str(webhook_mod), "--output", str(output)])

    assert "Number of version mismatches found: 2" in output.read_text()
    assert f"Report generated: {output}" in capsys.readouterr().out


def test_main_missing_file(tmp_path, capsys):
    webhook_mod = tmp_path / "webhook.mod"
    webhook_mod.write_text(ProbeTestUtils.WEBHOOK_GO_MOD)

    with pytest.raises(SystemExit) as exc_info:
        main([str(tmp_path / "missing.mod"), str(webhook_mod)])

    assert exc_info.value.code == 1
    assert "Error: Rancher go.mod file" in capsys.readouterr().out


@patch("rancher_probes.gomod_compare.load_go_mod")
def test_main_requires_both_files(mock_load):
    with pytest.raises(SystemExit) as exc_info:
        main(["rancher.mod"])

    assert exc_info.value.code == 1
    mock_load.assert_not_called()


if __name__ == "__main__":
    unittest.main()
