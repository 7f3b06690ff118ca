"""
Check that Steve rewrites `id` for custom resources that define their own top-level `id`.

Backup objects carry `id: test<i>`; Steve must still expose them as "<namespace>/<name>"
and filter and sort on that transformed id.
"""
import argparse
import logging
import sys
import time
from typing import List, Optional

from rancher_probes import k8s_utils, manifests
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

BACKUPS_RESOURCE = f"{manifests.BACKUP_GROUP}.{manifests.BACKUP_PLURAL}"
BACKUP_COUNT = 9
SETTLE_SECONDS = 5


def create_fixtures(namespace: str, logger: logging.Logger) -> None:
    print("Setting up test environment...")
    crd = manifests.backup_crd()
    logger.debug(manifests.to_yaml(crd))
    if k8s_utils.ensure_custom_resource_definition(crd):
        print("Waiting for CRD to be established...")
        if not k8s_utils.wait_for_crd_established(manifests.BACKUP_CRD_NAME):
            print("⚠️ CRD is not reported as established yet, continuing")

    print(f"Creating namespace: {namespace}")
    k8s_utils.create_namespace(namespace)

    print("Creating test backups...")
    for backup in manifests.backups(namespace, BACKUP_COUNT):
        logger.debug(manifests.to_yaml(backup))
        k8s_utils.create_namespaced_custom_object(
            manifests.BACKUP_GROUP,
            manifests.BACKUP_VERSION,
            manifests.BACKUP_PLURAL,
            namespace,
            backup,
        )
        print(f"Created backup: {backup['metadata']['name']} with id {backup['id']}")

    print("Waiting for resources to be available...")
    time.sleep(SETTLE_SECONDS)


def run_checks(suite: SteveCheckSuite, namespace: str) -> None:
    print("\n=== ID TRANSFORMATION TESTS ===")
    suite.check_id_transform(
        build_query([[f"id={namespace}/backup-1"]]), namespace, "Verify ID Transform"
    )

    print("\n=== FILTER TESTS ===")
    suite.check_count(
        build_query([[f"id={namespace}/backup-1", f"id={namespace}/backup-2"]]),
        2,
        "Filter Multiple IDs",
    )

    print("\n=== SORT TESTS ===")
    suite.check_count(
        build_query(sort="-id", projects_or_namespaces=namespace),
        BACKUP_COUNT,
        "Sort by Transformed ID Descending",
    )
    suite.check_count(
        build_query(sort="id", projects_or_namespaces=namespace),
        BACKUP_COUNT,
        "Sort by Transformed ID Ascending",
    )

    print("\n=== LIMIT TESTS ===")
    suite.check_count(
        build_query(limit=2, projects_or_namespaces=namespace), 2, "Basic Limit Test"
    )
    suite.check_count(
        build_query(sort="-id", limit=2, projects_or_namespaces=namespace),
        2,
        "Sort and Limit Combined",
    )


def delete_fixtures(namespace: str) -> None:
    best_effort(f"Deleting namespace {namespace}...", k8s_utils.delete_namespace, namespace)
    best_effort(
        "Deleting CRD...",
        k8s_utils.delete_custom_resource_definition,
        manifests.BACKUP_CRD_NAME,
    )


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Check Steve id transformation for a CRD with its own id field",
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

    run_id, namespace = new_test_names("backup-test")
    print(f"Test run ID: {run_id}")
    print(f"Using namespace: {namespace}")
    manual_hint = [
        f"kubectl delete ns {namespace}",
        f"kubectl delete crd {manifests.BACKUP_CRD_NAME}",
    ]

    try:
        create_fixtures(namespace, logger)
    except RuntimeError as e:
        print(f"❌ {e}")
        print("To cleanup manually, run:")
        print_manual_cleanup(manual_hint)
        sys.exit(1)

    with client:
        suite = SteveCheckSuite(client, BACKUPS_RESOURCE, logger)
        run_checks(suite, namespace)

    print(suite.summary())

    run_cleanup(args.cleanup, lambda: delete_fixtures(namespace), manual_hint)
    print("Test script completed")
    sys.exit(0 if suite.all_passed else 1)


if __name__ == "__main__":
    main()
