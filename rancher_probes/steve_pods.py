"""
Exercise Steve filter, sort and limit semantics on a set of synthetic pods.

Creates namespace synthetic-test-<id> with three nginx pods, waits for them to run and
checks the item counts returned by /v1/pods for a fixed set of queries.
"""
import argparse
import logging
import sys
from typing import List, Optional

from rancher_probes import k8s_utils, manifests
from rancher_probes.common import generate_run_id
from rancher_probes.steve_checks import (
    PrerequisiteError,
    SteveCheckSuite,
    add_connection_args,
    best_effort,
    connect,
    new_test_names,
    print_manual_cleanup,
    run_cleanup,
)
from rancher_probes.steve_client import build_query

POD_COUNT = 3
POD_SELECTOR = "test=synthetic-test"


def create_fixtures(namespace: str, logger: logging.Logger) -> List[str]:
    """Create the namespace and pods; returns the pod names."""
    print(f"Creating namespace: {namespace}")
    k8s_utils.create_namespace(namespace)

    pod_names = []
    for i in range(1, POD_COUNT + 1):
        pod_name = f"test-pod-{i}-{generate_run_id()}"
        print(f"Creating pod {pod_name} in namespace {namespace}...")
        manifest = manifests.synthetic_pod(pod_name, namespace)
        logger.debug(manifests.to_yaml(manifest))
        k8s_utils.create_pod(namespace, manifest)
        print(f"Successfully created Pod {pod_name}")
        pod_names.append(pod_name)
    return pod_names


def run_checks(suite: SteveCheckSuite, namespace: str, pod_names: List[str]) -> None:
    pod1 = f"{namespace}/{pod_names[0]}"
    pod2 = f"{namespace}/{pod_names[1]}"
    running = "metadata.state.name=running"

    print("\n=== SYNTHETIC FIELD TESTS ===")
    suite.check_count(build_query([[f"id={pod1}"]]), 1, "Filter by ID Test")
    suite.check_count(
        build_query([[f"id={pod1}", f"id={pod2}"]]), 2, "Filter by Multiple IDs Test"
    )
    suite.check_count(
        build_query([[running]], projects_or_namespaces=namespace),
        3,
        "Filter Running Pods Test",
    )
    suite.check_count(
        build_query([[f"id={pod1}", f"id={pod2}"], [running]]),
        2,
        "Filter by IDs AND State Test",
    )

    print("\n=== SORT TESTS ===")
    suite.check_count(
        build_query(sort="-id", projects_or_namespaces=namespace),
        3,
        "Sort Pods by ID Descending Test",
    )
    suite.check_count(
        build_query([[running]], sort="-metadata.state.name", projects_or_namespaces=namespace),
        3,
        "Sort Pods by State Test",
    )

    print("\n=== LIMIT TESTS ===")
    suite.check_count(
        build_query(limit=2, projects_or_namespaces=namespace), 2, "Limit Pods Test"
    )
    suite.check_count(
        build_query([[running]], sort="-id", limit=2, projects_or_namespaces=namespace),
        2,
        "Combined Operations Test",
    )


def delete_fixtures(namespace: str) -> None:
    best_effort(
        f"Deleting pods in namespace {namespace}...",
        k8s_utils.delete_pods,
        namespace,
        POD_SELECTOR,
    )
    best_effort(f"Deleting namespace {namespace}...", k8s_utils.delete_namespace, namespace)


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Check Steve pod filter/sort/limit queries against synthetic pods",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    add_connection_args(parser)
    return parser.parse_args(args)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)

    try:
        client, logger = connect(args)
    except PrerequisiteError as e:
        print(f"Error: {e}")
        sys.exit(1)

    run_id, namespace = new_test_names("synthetic-test")
    print(f"Test run ID: {run_id}")
    print(f"Using namespace: {namespace}")
    manual_hint = [f"kubectl delete ns {namespace}"]

    try:
        pod_names = create_fixtures(namespace, logger)
    except RuntimeError as e:
        print(f"❌ {e}")
        print("To cleanup manually, run:")
        print_manual_cleanup(manual_hint)
        sys.exit(1)

    print("Waiting for pods to be in Running state...")
    if not k8s_utils.wait_for_pods_running(namespace, POD_SELECTOR):
        print("Failed to get pods to Running state")
        print("To cleanup manually, run:")
        print_manual_cleanup(manual_hint)
        sys.exit(1)

    with client:
        suite = SteveCheckSuite(client, "pods", logger)
        run_checks(suite, namespace, pod_names)

    print("\nTest Summary:")
    print(f"Test Run ID: {run_id}")
    print(f"Namespace: {namespace}")
    print("Pod Names:")
    for pod_name in pod_names:
        print(f"- {pod_name}")
    print(suite.summary())

    run_cleanup(args.cleanup, lambda: delete_fixtures(namespace), manual_hint)
    print("Test script completed")
    sys.exit(0 if suite.all_passed else 1)


if __name__ == "__main__":
    main()
