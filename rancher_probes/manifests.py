from typing import Any, Dict, List

import yaml

SYNTHETIC_POD_LABEL = {"test": "synthetic-test"}
BACKUP_LABEL = {"test": "backup-test"}
JOB_LABEL = {"test": "job-state-test"}

BACKUP_GROUP = "stable.example.com"
BACKUP_VERSION = "v1"
BACKUP_PLURAL = "backups"
BACKUP_CRD_NAME = f"{BACKUP_PLURAL}.{BACKUP_GROUP}"


def to_yaml(data: Any) -> str:
    """
    Generate YAML string from data structure with proper formatting.

    Args:
        data: Dictionary (or list of dictionaries) representing Kubernetes manifests

    Returns:
        Properly formatted YAML string; lists become a multi-document stream
    """
    try:
        if isinstance(data, list):
            return yaml.dump_all(
                data,
                default_flow_style=False,
                sort_keys=False,
                indent=2,
                width=120,
                allow_unicode=True,
            )
        return yaml.dump(
            data,
            default_flow_style=False,
            sort_keys=False,
            indent=2,
            width=120,
            allow_unicode=True,
        )
    except yaml.YAMLError as e:
        raise ValueError(f"Failed to generate YAML: {e}")


def synthetic_pod(name: str, namespace: str) -> Dict[str, Any]:
    """Generate the nginx pod used by the pod filter checks."""
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": dict(SYNTHETIC_POD_LABEL),
        },
        "spec": {"containers": [{"name": "nginx", "image": "nginx:latest"}]},
    }


def failing_job(name: str, namespace: str) -> Dict[str, Any]:
    """Generate a job that runs for a minute and then fails without retries."""
    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": {"name": name, "namespace": namespace, "labels": dict(JOB_LABEL)},
        "spec": {
            "backoffLimit": 0,
            "template": {
                "spec": {
                    "containers": [
                        {
                            "name": "alpine-sleep",
                            "image": "alpine",
                            "command": ["sh", "-c", "sleep 60; exit 1"],
                        }
                    ],
                    "restartPolicy": "Never",
                }
            },
        },
    }


def _backup_schema() -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "id": {"type": "string", "description": "Unique identifier for the backup"},
            "spec": {
                "type": "object",
                "properties": {
                    "frequency": {
                        "type": "string",
                        "description": "Backup frequency (e.g. daily, hourly)",
                    },
                    "destination": {"type": "string", "description": "Backup destination path"},
                    "retention": {
                        "type": "integer",
                        "description": "Number of backups to retain",
                    },
                },
                "required": ["frequency", "destination"],
            },
            "status": {
                "type": "object",
                "properties": {
                    "lastBackupTime": {"type": "string"},
                    "backupCount": {"type": "integer"},
                },
            },
        },
        "required": ["id"],
    }


def backup_crd() -> Dict[str, Any]:
    """Generate the namespaced Backup CRD whose objects carry their own top-level `id`."""
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": BACKUP_CRD_NAME},
        "spec": {
            "group": BACKUP_GROUP,
            "versions": [
                {
                    "name": BACKUP_VERSION,
                    "served": True,
                    "storage": True,
                    "schema": {"openAPIV3Schema": _backup_schema()},
                }
            ],
            "scope": "Namespaced",
            "names": {
                "plural": BACKUP_PLURAL,
                "singular": "backup",
                "kind": "Backup",
                "shortNames": ["bkp"],
            },
        },
    }


def backup(name: str, namespace: str, backup_id: str) -> Dict[str, Any]:
    return {
        "apiVersion": f"{BACKUP_GROUP}/{BACKUP_VERSION}",
        "kind": "Backup",
        "metadata": {"name": name, "namespace": namespace, "labels": dict(BACKUP_LABEL)},
        "spec": {"frequency": "daily", "destination": f"/backup/{name}", "retention": 7},
        "id": backup_id,
    }


def backups(namespace: str, count: int = 9) -> List[Dict[str, Any]]:
    """backup-1..backup-<count>, each with id test<i>."""
    return [backup(f"backup-{i}", namespace, f"test{i}") for i in range(1, count + 1)]
