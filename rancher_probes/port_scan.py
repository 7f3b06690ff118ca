"""
Scan /proc/net/tcp and /proc/net/tcp6 of every Rancher pod for a listening port.

Unlike port_check this needs nothing inside the pod except `cat`, so it works on minimal
images. Exit status is 0 when at least one pod has the port listening.
"""
import argparse
import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from kubernetes.config import ConfigException

from rancher_probes import k8s_utils
from rancher_probes.common import check_required_tools, make_run_dir
from rancher_probes.config_loader import (
    load_settings_or_exit,
    port_number,
    port_to_hex,
    resolve_kubeconfig,
)
from rancher_probes.logger import get_logger

TCP_LISTEN_STATE = "0A"
DEFAULT_KUBECONFIG = "local.yaml"
RESULTS_RULE = "-" * 44


@dataclass(frozen=True)
class SocketEntry:
    local_address: str
    local_port: str
    remote_address: str
    remote_port: str
    state: str
    line: str

    @property
    def listening(self) -> bool:
        return self.state == TCP_LISTEN_STATE


def parse_proc_net_tcp(text: str) -> List[SocketEntry]:
    """
    Parse the contents of /proc/net/tcp or /proc/net/tcp6.

    Addresses and ports are kept as the kernel prints them (hex); ports and states are
    upper-cased. The header line and malformed lines are skipped.
    """
    entries = []
    for line in text.splitlines():
        fields = line.split()
        if len(fields) < 4 or not fields[0].endswith(":"):
            continue
        if ":" not in fields[1] or ":" not in fields[2]:
            continue
        local_address, local_port = fields[1].rsplit(":", 1)
        remote_address, remote_port = fields[2].rsplit(":", 1)
        entries.append(
            SocketEntry(
                local_address=local_address,
                local_port=local_port.upper(),
                remote_address=remote_address,
                remote_port=remote_port.upper(),
                state=fields[3].upper(),
                line=line.strip(),
            )
        )
    return entries


def find_port_entries(text: str, port_hex: str, listening_only: bool = True) -> List[SocketEntry]:
    wanted = port_hex.upper().zfill(4)
    return [
        entry
        for entry in parse_proc_net_tcp(text)
        if entry.local_port == wanted and (entry.listening or not listening_only)
    ]


def _read_pod_file(pod: str, namespace: str, path: str, logger: logging.Logger) -> str:
    try:
        result = k8s_utils.exec_in_pod(pod, namespace, ["cat", path])
    except RuntimeError as e:
        logger.debug(f"Reading {path} from {pod} failed: {e}")
        return ""
    return result.stdout if result.ok else ""


def check_port_listening(
    pod: str,
    namespace: str,
    port: int,
    port_hex: str,
    log_dir: Path,
    logger: logging.Logger,
) -> Optional[bool]:
    """
    Check one pod and write its _tcp, _tcp6 and _results logs.

    Returns:
        True/False for listening/not listening, None if no socket table could be read
    """
    logger.info(f"Checking pod: {pod}")
    logger.info("Extracting network information from pod...")

    tables = {}
    for label, path in (("TCP", "/proc/net/tcp"), ("TCP6", "/proc/net/tcp6")):
        content = _read_pod_file(pod, namespace, path, logger)
        (log_dir / f"{pod}_{label.lower()}.log").write_text(content, encoding="utf-8")
        tables[label] = content

    if not any(tables.values()):
        logger.error(f"Failed to extract network information from pod {pod}")
        return None

    logger.info(f"Checking for port {port} in pod {pod}...")
    results = [
        f"Port check results for pod: {pod}",
        RESULTS_RULE,
        f"Checking for port {port} (hex {port_hex})...",
    ]

    port_found = False
    for label, content in tables.items():
        entries = find_port_entries(content, port_hex)
        if entries:
            logger.info(f"✅ Port {port} is LISTENING on pod {pod} ({label})")
            results.append(f"{label}: Port {port} is LISTENING")
            results.extend(entry.line for entry in entries)
            port_found = True
        else:
            results.append(f"{label}: Port {port} is NOT listening")

    if not port_found:
        logger.warning(f"Port {port} is NOT listening on pod {pod}")

    results.append(RESULTS_RULE)
    (log_dir / f"{pod}_results.log").write_text("\n".join(results) + "\n", encoding="utf-8")
    return port_found


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    settings = load_settings_or_exit()
    parser = argparse.ArgumentParser(
        description="Check /proc/net/tcp{,6} of Rancher pods for a listening port",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--port", type=port_number, default=settings.port, help="Port to look for"
    )
    parser.add_argument(
        "--port-hex",
        default=None,
        help="Port as it appears in /proc/net/tcp (default: derived from --port)",
    )
    parser.add_argument("--namespace", default=settings.namespace, help="Rancher namespace")
    parser.add_argument(
        "--kubeconfig",
        default=settings.kubeconfig or DEFAULT_KUBECONFIG,
        help="Kubeconfig file; falls back to $KUBECONFIG_ENV when missing",
    )
    parser.add_argument("--label-selector", default="app=rancher", help="Pod label selector")
    parser.add_argument(
        "--log-dir", default=None, help="Directory for logs (default: port-check-<timestamp>)"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parsed = parser.parse_args(args)

    if parsed.port_hex is None:
        if parsed.port == settings.port:
            parsed.port_hex = settings.port_hex
        else:
            parsed.port_hex = port_to_hex(parsed.port)
    parsed.port_hex = parsed.port_hex.upper()
    return parsed


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)

    print("=" * 54)
    print(f"   Rancher Pod Port Check - {datetime.now():%c}")
    print("=" * 54)
    print(f"Checking for port {args.port} (hex: {args.port_hex}) in Rancher pods")
    print()

    if args.log_dir:
        log_dir = Path(args.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
    else:
        log_dir = make_run_dir("port-check")
    logger = get_logger(
        "rancher_probes.port_scan", args.debug, log_file=log_dir / "port-check.log"
    )
    logger.info(f"Created log directory: {log_dir}")

    try:
        kubeconfig = resolve_kubeconfig(args.kubeconfig)
    except FileNotFoundError as e:
        logger.error(str(e))
        sys.exit(1)
    if kubeconfig != args.kubeconfig:
        logger.info(f"Using KUBECONFIG from environment variable: {kubeconfig}")
    logger.info(f"Using kubeconfig: {kubeconfig}")

    if check_required_tools(["kubectl"]):
        logger.error("kubectl command not found! Please install kubectl.")
        sys.exit(1)

    logger.info("Verifying connection to Kubernetes cluster...")
    try:
        k8s_utils.configure(kubeconfig)
    except ConfigException as e:
        logger.error(f"Failed to load kubeconfig: {e}")
        sys.exit(1)
    if not k8s_utils.check_cluster_access():
        logger.error(
            "Failed to connect to Kubernetes cluster. Check your kubeconfig and cluster status."
        )
        sys.exit(1)

    logger.info(f"Finding Rancher pods in namespace '{args.namespace}'...")
    try:
        pods = k8s_utils.list_pod_names(args.namespace, label_selector=args.label_selector)
    except RuntimeError as e:
        logger.error(str(e))
        sys.exit(1)
    if not pods:
        logger.error(f"No Rancher pods found in namespace '{args.namespace}'!")
        sys.exit(1)
    logger.info(f"Found {len(pods)} Rancher pod(s)")

    listening_pods = 0
    for index, pod in enumerate(pods, start=1):
        logger.info(f"Processing pod {index}/{len(pods)}: {pod}")
        if check_port_listening(pod, args.namespace, args.port, args.port_hex, log_dir, logger):
            listening_pods += 1
        print()

    print("=" * 54)
    print("                      SUMMARY                         ")
    print("=" * 54)
    print(f"Total Rancher pods checked: {len(pods)}")
    print(f"Pods with port {args.port} listening: {listening_pods}")
    print()
    print(f"Detailed logs saved in: {log_dir}")
    print("=" * 54)

    if listening_pods > 0:
        logger.info(f"✅ {listening_pods} pod(s) have port {args.port} listening")
        sys.exit(0)
    logger.warning(f"No pods have port {args.port} listening")
    sys.exit(1)


if __name__ == "__main__":
    main()
