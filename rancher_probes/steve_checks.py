"""
Shared harness for the Steve query checks.

Every check prints the query, the full URL and a curl command for manual reproduction,
then records a PASS/FAIL. API errors fail the check and never abort the suite.
"""
import argparse
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

import requests
from kubernetes.config import ConfigException

from rancher_probes import k8s_utils
from rancher_probes.common import (
    check_required_tools,
    generate_run_id,
    make_test_namespace_name,
    prompt_yes_no,
)
from rancher_probes.logger import get_logger
from rancher_probes.steve_client import SteveApiError, SteveClient

CLEANUP_MODES = ("ask", "yes", "no")


class PrerequisiteError(RuntimeError):
    """A tool, file or cluster the checks depend on is not available."""


@dataclass(frozen=True)
class CheckResult:
    description: str
    passed: bool


class SteveCheckSuite:
    def __init__(
        self, client: SteveClient, resource: str, logger: Optional[logging.Logger] = None
    ) -> None:
        self.client = client
        self.resource = resource
        self.logger = logger or logging.getLogger(__name__)
        self.results: List[CheckResult] = []

    def _record(self, description: str, passed: bool) -> bool:
        self.results.append(CheckResult(description, passed))
        return passed

    def _fetch(self, query: str, description: str) -> Optional[List[Any]]:
        url = self.client.url(self.resource, query)
        print(f"\n=== {description} ===")
        print(f"Testing {self.resource} with query: {query}")
        print(f"Full URL: {url}")
        print("To test manually:")
        print(self.client.curl_command(url))
        print("---")

        try:
            return self.client.list(self.resource, query)["data"]
        except (requests.RequestException, SteveApiError) as e:
            self.logger.debug(f"Query {url} failed: {e!r}")
            print("❌ Failed to parse response")
            print(str(e))
            return None

    def check_count(self, query: str, expected: int, description: str) -> bool:
        data = self._fetch(query, description)
        if data is None:
            return self._record(description, False)

        actual = len(data)
        if actual == expected:
            print(f"✅ Test passed: Found {actual} items (expected {expected})")
            print("Items found:")
            for item in data:
                print(item.get("id"))
            passed = True
        else:
            print(f"❌ Test failed: Found {actual} items (expected {expected})")
            print("Response data:")
            print(json.dumps(data, indent=2))
            passed = False
        print("---")
        return self._record(description, passed)

    def check_presence(
        self, query: str, object_id: str, expect_present: bool, description: str
    ) -> bool:
        data = self._fetch(query, description)
        if data is None:
            return self._record(description, False)

        matches = [item for item in data if item.get("id") == object_id]
        print(f"Total items returned: {len(data)}")
        print(f"Looking for: {object_id}")

        if expect_present and matches:
            print(f"✅ Test passed: '{object_id}' found in results as expected")
            _print_state_details(matches)
            passed = True
        elif expect_present:
            print(f"❌ Test failed: '{object_id}' NOT found in results (expected present)")
            print("Items returned:")
            for item in data:
                print(item.get("id"))
            passed = False
        elif not matches:
            print(f"✅ Test passed: '{object_id}' correctly absent from results")
            passed = True
        else:
            print(f"❌ Test failed: '{object_id}' found in results (expected absent)")
            _print_state_details(matches)
            passed = False
        print("---")
        return self._record(description, passed)

    def check_id_transform(self, query: str, namespace: str, description: str) -> bool:
        """The first item's `id` must be "<namespace>/<metadata.name>", not its own id field."""
        data = self._fetch(query, description)
        if not data:
            if data is not None:
                print("❌ Test failed: no items returned")
            return self._record(description, False)

        first = data[0]
        name = (first.get("metadata") or {}).get("name")
        expected = f"{namespace}/{name}"
        print("Checking ID transformation:")
        print(f"Original _id: {first.get('_id')}")
        print(f"New transformed id: {first.get('id')}")
        print(f"Expected format: {expected}")

        if first.get("id") == expected:
            print("✅ Test passed: ID transformation verified")
            return self._record(description, True)
        print("❌ Test failed: ID transformation incorrect")
        print(f"Expected: {expected}")
        print(f"Got: {first.get('id')}")
        return self._record(description, False)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed_count(self) -> int:
        return sum(1 for result in self.results if result.passed)

    @property
    def failed_count(self) -> int:
        return self.total - self.passed_count

    @property
    def all_passed(self) -> bool:
        return self.failed_count == 0

    def summary(self) -> str:
        lines = ["", "============== Test Summary ==============", f"Total tests run: {self.total}"]
        lines += [f"{'✅' if r.passed else '❌'} {r.description}" for r in self.results]
        lines += ["", "Results:", f"Passed: {self.passed_count}", f"Failed: {self.failed_count}"]
        if self.total > 0:
            lines.append(f"Success rate: {self.passed_count * 100 // self.total}%")
        lines.append("=" * 41)
        return "\n".join(lines)


def _print_state_details(items: List[Any]) -> None:
    print("State details:")
    for item in items:
        state = (item.get("metadata") or {}).get("state")
        print(json.dumps({"id": item.get("id"), "state": state}, indent=2))


def best_effort(description: str, action: Callable[..., None], *args: Any) -> None:
    """Run one cleanup step, reporting instead of raising on failure."""
    print(description)
    try:
        action(*args)
    except RuntimeError as e:
        print(f"⚠️ {e}")


def print_manual_cleanup(manual_hint: List[str]) -> None:
    for line in manual_hint:
        print(line)


def run_cleanup(mode: str, delete_fn: Callable[[], None], manual_hint: List[str]) -> bool:
    """
    Delete the fixtures according to `mode` ("ask", "yes" or "no").

    Returns:
        True if cleanup ran
    """
    print("Before cleanup, please verify the test results above.")
    print("All curl commands are provided for manual verification.")

    if mode == "ask":
        answer = prompt_yes_no("Do you want to cleanup the test resources?")
        if answer is None:
            print("Failed to get terminal input. Skipping cleanup.")
            print("To cleanup manually, run:")
            print_manual_cleanup(manual_hint)
            return False
    else:
        answer = mode == "yes"

    if not answer:
        print("Skipping cleanup. To cleanup later, run:")
        print_manual_cleanup(manual_hint)
        return False

    print("Starting cleanup process...")
    delete_fn()
    print("Cleanup completed")
    return True


def new_test_names(prefix: str) -> Tuple[str, str]:
    """Return (run_id, namespace) for a fresh fixture namespace."""
    run_id = generate_run_id()
    return run_id, make_test_namespace_name(prefix, run_id)


def add_connection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("rancher_url", help="Rancher host or URL, e.g. rancher.example.com")
    parser.add_argument("rancher_token", help="API token (access-key:secret-key or bearer)")
    parser.add_argument("kubeconfig_path", help="Kubeconfig of the downstream/local cluster")
    parser.add_argument(
        "--cleanup",
        choices=CLEANUP_MODES,
        default="ask",
        help="Delete the test resources at the end: ask, always or never",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")


def connect(
    args: argparse.Namespace, required_tools: Tuple[str, ...] = ()
) -> Tuple[SteveClient, logging.Logger]:
    """
    Validate prerequisites and build the Steve client.

    Raises:
        PrerequisiteError: If a tool, the kubeconfig or the cluster is unavailable
    """
    logger = get_logger("rancher_probes.steve", args.debug)

    print("Checking required commands...")
    missing = check_required_tools(required_tools)
    if missing:
        raise PrerequisiteError(f"Required tools not installed: {', '.join(missing)}")

    print("Validating cluster access...")
    if not Path(args.kubeconfig_path).is_file():
        raise PrerequisiteError(f"Kubeconfig file not found at: {args.kubeconfig_path}")
    print(f"Using kubeconfig: {args.kubeconfig_path}")
    try:
        k8s_utils.configure(args.kubeconfig_path)
    except ConfigException as e:
        raise PrerequisiteError(f"Invalid kubeconfig {args.kubeconfig_path}: {e}") from e
    if not k8s_utils.check_cluster_access():
        raise PrerequisiteError(
            "Unable to access the Kubernetes cluster using the provided kubeconfig. "
            "Please check your kubeconfig and try again"
        )
    print("✅ Successfully connected to Kubernetes cluster")

    client = SteveClient(args.rancher_url, args.rancher_token)
    print(f"Using Base URL: {client.base_url}")
    print(f"Using Token: {args.rancher_token[:10]}...")
    return client, logger
