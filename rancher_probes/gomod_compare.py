"""
Compare the versions of an organisation's Go modules between two go.mod files.

Typical use is checking that rancher and rancher/webhook pin the same versions of the
shared github.com/rancher/* libraries before a release.
"""
import argparse
import re
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from rancher_probes.common import make_time_stamp

DEFAULT_ORG = "github.com/rancher"
VERSION_RE = re.compile(r"v[0-9]\S*")
RULE = "=" * 59


@dataclass(frozen=True)
class GoModLine:
    text: str
    kind: str
    repos: Tuple[str, ...]
    versions: Tuple[str, ...]


@dataclass
class GoModDeps:
    path: str
    org: str
    lines: List[GoModLine] = field(default_factory=list)

    @property
    def requires(self) -> List[GoModLine]:
        return [line for line in self.lines if line.kind == "require"]

    @property
    def replaces(self) -> List[GoModLine]:
        return [line for line in self.lines if line.kind == "replace"]

    def repos(self) -> List[str]:
        return sorted({repo for line in self.lines for repo in line.repos})

    def instances(self, repo: str) -> List[GoModLine]:
        return [line for line in self.lines if repo in line.repos]

    def versions(self, repo: str) -> List[str]:
        return sorted({v for line in self.instances(repo) for v in line.versions})


@dataclass(frozen=True)
class RepoComparison:
    repo: str
    rancher_lines: List[GoModLine]
    webhook_lines: List[GoModLine]
    rancher_versions: List[str]
    webhook_versions: List[str]

    @property
    def mismatch(self) -> bool:
        return self.rancher_versions != self.webhook_versions


def parse_go_mod(text: str, org: str = DEFAULT_ORG, path: str = "") -> GoModDeps:
    """
    Collect every go.mod line that mentions `org`.

    A line is a "replace" when it sits in a replace block or contains "=>", otherwise a
    "require". Each line lists every repository of the org it names (the first path
    segment after "<org>/") and every version token on it.
    """
    repo_re = re.compile(re.escape(org) + r"/([^/\s]+)")
    deps = GoModDeps(path=path, org=org)
    block = None

    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if block is None and stripped in ("require (", "replace ("):
            block = stripped.split()[0]
            continue
        if block is not None and stripped == ")":
            block = None
            continue
        if org not in raw_line:
            continue

        kind = "replace" if block == "replace" or "=>" in raw_line else "require"
        repos = tuple(dict.fromkeys(repo_re.findall(raw_line)))
        deps.lines.append(
            GoModLine(
                text=stripped,
                kind=kind,
                repos=repos,
                versions=tuple(VERSION_RE.findall(raw_line)),
            )
        )
    return deps


def load_go_mod(path: str, org: str = DEFAULT_ORG) -> GoModDeps:
    file_path = Path(path)
    if not file_path.is_file():
        raise FileNotFoundError(path)
    return parse_go_mod(file_path.read_text(encoding="utf-8"), org, path)


def compare(rancher: GoModDeps, webhook: GoModDeps) -> List[RepoComparison]:
    """Compare the repositories present in both files, sorted by name."""
    shared = sorted(set(rancher.repos()) & set(webhook.repos()))
    return [
        RepoComparison(
            repo=repo,
            rancher_lines=rancher.instances(repo),
            webhook_lines=webhook.instances(repo),
            rancher_versions=rancher.versions(repo),
            webhook_versions=webhook.versions(repo),
        )
        for repo in shared
    ]


def _dependency_listing(deps: GoModDeps, prefix: str) -> List[str]:
    lines = [
        "",
        f"{prefix} Dependencies ({deps.org}/*)",
        "=" * 50,
        "",
        "Require statements:",
    ]
    lines += [line.text for line in deps.requires]
    lines += ["", "Replace statements:"]
    lines += [line.text for line in deps.replaces]
    return lines


def _comparison_block(comparison: RepoComparison, org: str) -> List[str]:
    lines = ["", f"Repository: {org}/{comparison.repo}", "In Rancher:"]
    lines += [f"    {line.text}" for line in comparison.rancher_lines]
    lines.append("In Webhook:")
    lines += [f"    {line.text}" for line in comparison.webhook_lines]
    return lines


def render_report(
    rancher: GoModDeps,
    webhook: GoModDeps,
    comparisons: List[RepoComparison],
    generated_at: Optional[datetime] = None,
) -> str:
    generated_at = generated_at or datetime.now()
    org = rancher.org
    mismatches = [c for c in comparisons if c.mismatch]

    lines = [
        f"Rancher Dependencies Comparison Report - Generated at {generated_at:%c}",
        RULE,
        "Comparing:",
        f"  Rancher: {rancher.path}",
        f"  Webhook: {webhook.path}",
        RULE,
    ]
    lines += _dependency_listing(rancher, "Rancher Module")
    lines += _dependency_listing(webhook, "Webhook Module")

    lines += ["", "Detailed Version Analysis:", "=" * 26]
    for comparison in comparisons:
        lines += _comparison_block(comparison, org)

    lines += ["", f"Version Mismatches Found ({len(mismatches)} total):", "=" * 43]
    for comparison in mismatches:
        lines += _comparison_block(comparison, org)

    lines += [
        "",
        "Summary:",
        "=" * 8,
        f"Total Rancher dependencies in {rancher.path}: {len(rancher.lines)}",
        f"Total Rancher dependencies in {webhook.path}: {len(webhook.lines)}",
        f"Number of version mismatches found: {len(mismatches)}",
    ]
    return "\n".join(lines) + "\n"


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Compare shared Go module versions between rancher and webhook go.mod files",
        epilog="Example: gomod-compare rancher.mod webhook.mod",
    )
    parser.add_argument("rancher_mod", nargs="?", help="Rancher go.mod file")
    parser.add_argument("webhook_mod", nargs="?", help="Webhook go.mod file")
    parser.add_argument("--org", default=DEFAULT_ORG, help="Module path prefix to compare")
    parser.add_argument(
        "--output",
        default=None,
        help="Report file (default: rancher_deps_comparison_<timestamp>.txt)",
    )
    parsed = parser.parse_args(args)
    if parsed.rancher_mod is None or parsed.webhook_mod is None:
        parser.print_usage()
        sys.exit(1)
    return parsed


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)

    try:
        rancher = load_go_mod(args.rancher_mod, args.org)
    except FileNotFoundError:
        print(f"Error: Rancher go.mod file '{args.rancher_mod}' not found")
        sys.exit(1)
    try:
        webhook = load_go_mod(args.webhook_mod, args.org)
    except FileNotFoundError:
        print(f"Error: Webhook go.mod file '{args.webhook_mod}' not found")
        sys.exit(1)

    report = render_report(rancher, webhook, compare(rancher, webhook))
    output_file = Path(args.output or f"rancher_deps_comparison_{make_time_stamp()}.txt")
    output_file.write_text(report, encoding="utf-8")

    print(report, end="")
    print(f"Report generated: {output_file}")


if __name__ == "__main__":
    main()
