"""
Take a consistent snapshot of each Rancher pod's VAI cache and look for a namespace in it.

Copying the live database can catch it mid-write, so a small Go tool built inside the pod
runs `VACUUM INTO` first and only the resulting snapshot is copied out.
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from kubernetes.config import ConfigException

from rancher_probes import k8s_utils
from rancher_probes.common import make_time_stamp
from rancher_probes.config_loader import load_settings_or_exit, resolve_kubeconfig
from rancher_probes.logger import get_logger
from rancher_probes.vai_cache import find_namespaces, is_usable_db

RANCHER_NAMESPACE = "cattle-system"
RANCHER_SELECTOR = "app=rancher"
REMOTE_SCRIPT_PATH = "/tmp/pod-snapshot.sh"
REMOTE_SNAPSHOT_PATH = "/tmp/snapshot.db"
SNAPSHOT_TIMEOUT_SECONDS = 600

POD_SNAPSHOT_SCRIPT = r"""#!/bin/sh
set -e

GO_VERSION="1.23.6"

install_go() {
    if command -v go >/dev/null 2>&1; then
        return
    fi
    if [ -x /usr/local/go/bin/go ]; then
        export PATH=$PATH:/usr/local/go/bin
        return
    fi
    echo "Installing Go ${GO_VERSION}..."
    curl -sSL -o /tmp/go.tgz "https://go.dev/dl/go${GO_VERSION}.linux-amd64.tar.gz" --insecure
    tar -C /usr/local -xzf /tmp/go.tgz
    rm -f /tmp/go.tgz
    export PATH=$PATH:/usr/local/go/bin
}

build_binary() {
    if [ -x /usr/local/bin/vai-snapshot ]; then
        echo "Using existing vai-snapshot tool"
        return
    fi

    echo "Building vai-snapshot tool..."
    mkdir -p /tmp/vai_snapshot
    cat <<'EOGO' >/tmp/vai_snapshot/main.go
package main

import (
    "context"
    "database/sql"
    "log"
    "time"
    _ "modernc.org/sqlite"
)

func main() {
    ctx, cancel := context.WithTimeout(context.Background(), 30*time.Second)
    defer cancel()

    db, err := sql.Open("sqlite", "/var/lib/rancher/informer_object_cache.db")
    if err != nil {
        log.Fatalf("open db: %v", err)
    }
    defer db.Close()

    if _, err = db.ExecContext(ctx, "VACUUM INTO '/tmp/snapshot.db'"); err != nil {
        log.Fatalf("vacuum: %v", err)
    }
}
EOGO

    cd /tmp/vai_snapshot
    go mod init vai-snapshot >/dev/null 2>&1 || true
    GO111MODULE=on go get modernc.org/sqlite >/dev/null
    go build -o /usr/local/bin/vai-snapshot .
}

install_go
build_binary
/bin/rm -f /tmp/snapshot.db
/usr/local/bin/vai-snapshot
echo "Snapshot written to /tmp/snapshot.db"
"""


def snapshot_pod(pod: str, script_path: Path, pod_dir: Path, logger: logging.Logger) -> Path:
    """
    Run the snapshot script in the pod and copy the snapshot to pod_dir.

    Raises:
        RuntimeError: If any step in the pod or the copy fails
    """
    logger.info("Running snapshot process on pod...")
    k8s_utils.copy_to_pod(pod, RANCHER_NAMESPACE, str(script_path), REMOTE_SCRIPT_PATH)
    result = k8s_utils.exec_in_pod(
        pod, RANCHER_NAMESPACE, ["sh", REMOTE_SCRIPT_PATH], timeout=SNAPSHOT_TIMEOUT_SECONDS
    )
    for line in result.output.splitlines():
        logger.debug(f"   {line}")
    if not result.ok:
        raise RuntimeError(f"Snapshot script failed in {pod} (exit code {result.returncode})")

    logger.info("Copying snapshot from pod...")
    local_path = pod_dir / "snapshot.db"
    k8s_utils.copy_from_pod(pod, RANCHER_NAMESPACE, REMOTE_SNAPSHOT_PATH, str(local_path))
    return local_path


def cleanup_pod(pod: str, logger: logging.Logger) -> None:
    """Remove the uploaded script and snapshot; Go and the tool stay installed."""
    logger.info("Cleaning up temporary files...")
    try:
        k8s_utils.exec_in_pod(
            pod, RANCHER_NAMESPACE, ["rm", "-f", REMOTE_SCRIPT_PATH, REMOTE_SNAPSHOT_PATH]
        )
    except RuntimeError as e:
        logger.warning(f"⚠️ Cleanup failed in {pod}: {e}")


def check_pod(
    pod: str, namespace_to_find: str, run_dir: Path, script_path: Path, logger: logging.Logger
) -> bool:
    logger.info(f"Processing pod: {pod}")
    pod_dir = run_dir / pod
    pod_dir.mkdir(parents=True, exist_ok=True)

    found = False
    try:
        snapshot = snapshot_pod(pod, script_path, pod_dir, logger)
        if not is_usable_db(snapshot):
            logger.error("❌ Failed to copy snapshot from pod")
        else:
            logger.info(f"Checking snapshot from {pod}...")
            found = bool(find_namespaces(snapshot, namespace_to_find, exact=True))
            if found:
                logger.info(f"✅ Found namespace '{namespace_to_find}' in pod: {pod}")
            else:
                logger.info(f"❌ Namespace '{namespace_to_find}' not found in pod: {pod}")
    except RuntimeError as e:
        logger.error(f"❌ {e}")
    finally:
        cleanup_pod(pod, logger)
    return found


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    settings = load_settings_or_exit()
    parser = argparse.ArgumentParser(
        description="Snapshot each Rancher pod's VAI cache and check it for a namespace",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("namespace", help="Namespace name to look for (exact match)")
    parser.add_argument(
        "--run-dir", default=None, help="Output directory (default: ./vai-run-<timestamp>)"
    )
    parser.add_argument("--kubeconfig", default=settings.kubeconfig, help="Kubeconfig file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(args)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logger = get_logger("rancher_probes.vai_snapshot", args.debug)

    run_dir = Path(args.run_dir or Path.cwd() / f"vai-run-{make_time_stamp()}")
    run_dir.mkdir(parents=True, exist_ok=True)
    script_path = run_dir / "pod-snapshot.sh"
    script_path.write_text(POD_SNAPSHOT_SCRIPT, encoding="utf-8")

    try:
        k8s_utils.configure(resolve_kubeconfig(args.kubeconfig))
        pods = k8s_utils.list_pod_names(RANCHER_NAMESPACE, label_selector=RANCHER_SELECTOR)
    except (FileNotFoundError, ConfigException, RuntimeError) as e:
        logger.error(f"❌ {e}")
        sys.exit(1)
    if not pods:
        logger.error(f"❌ No Rancher pods found in {RANCHER_NAMESPACE}")
        sys.exit(1)

    results = {pod: check_pod(pod, args.namespace, run_dir, script_path, logger) for pod in pods}

    logger.info(f"All snapshots saved in: {run_dir}")
    found_in = sum(results.values())
    logger.info(f"Namespace '{args.namespace}' found in {found_in}/{len(pods)} pods")
    sys.exit(0 if found_in == len(pods) else 1)


if __name__ == "__main__":
    main()
