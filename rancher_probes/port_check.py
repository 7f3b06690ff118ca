"""
Check whether a TCP port is listening inside every Rancher pod.

Modes:
    enabled   every pod must have the port listening
    disabled  no pod may have the port listening
    check     report the state of each pod without judging it

Each pod is probed with the first method that yields an answer: an ephemeral alpine debug
container running `ss`, an exec into the pod when it ships `ss`/`netstat`, and finally a
short-lived `kubectl port-forward`.
"""
import argparse
import logging
import os
import re
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

from kubernetes.config import ConfigException

from rancher_probes import k8s_utils
from rancher_probes.common import check_required_tools, make_run_dir
from rancher_probes.config_loader import (
    load_settings_or_exit,
    port_number,
    resolve_kubeconfig,
)
from rancher_probes.logger import get_logger

DEBUG_IMAGE = "alpine:latest"
PORT_FORWARD_SETTLE_SECONDS = 3
RANCHER_POD_PREFIX = "rancher-"

_PORT_STATUS_RE = re.compile(r"PORT_STATUS:(ENABLED|DISABLED)")


class ExpectedMode(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"
    CHECK = "check"


class PortStatus(Enum):
    ENABLED = "ENABLED"
    DISABLED = "DISABLED"


@dataclass
class PortCheckTally:
    passed: int = 0
    failed: int = 0
    enabled: int = 0
    disabled: int = 0
    errors: int = 0


def parse_port_status(text: str) -> Optional[PortStatus]:
    """Return the last PORT_STATUS marker in the text, if any."""
    matches = _PORT_STATUS_RE.findall(text)
    if not matches:
        return None
    return PortStatus(matches[-1])


def port_in_socket_listing(text: str, port: int) -> bool:
    """
    True if `port` is a local listening port in `ss -lntp` or `netstat -tulpn` output.

    Both tools print the local address as the fourth column.
    """
    for line in text.splitlines():
        fields = line.split()
        if len(fields) < 4:
            continue
        if fields[3].rsplit(":", 1)[-1] == str(port):
            return True
    return False


def build_debug_script(port: int) -> str:
    """Shell script run in the debug container; prints the ss listing then a status marker."""
    return f"""echo "Running port check..."
echo "Installing iproute2 package..."
apk add --no-cache iproute2 > /dev/null 2>&1
echo "Checking listening ports with ss -lntp..."
SS_OUTPUT=$(ss -lntp)
echo "${{SS_OUTPUT}}"
if echo "${{SS_OUTPUT}}" | awk '{{print $4}}' | grep -qE ':{port}$'; then
    echo "PORT_STATUS:ENABLED"
else
    echo "PORT_STATUS:DISABLED"
fi
"""


def _status_marker(status: PortStatus) -> str:
    return f"PORT_STATUS:{status.value}\n"


def check_with_debug_container(
    pod: str, namespace: str, port: int, pod_log: Path, logger: logging.Logger
) -> Optional[PortStatus]:
    logger.info("   Attempting method with ephemeral container (non-interactive)...")
    try:
        result = k8s_utils.debug_pod(pod, namespace, DEBUG_IMAGE, build_debug_script(port))
        output = (result.stdout or "") + (result.stderr or "")
    except RuntimeError as e:
        output = f"{e}\n"
    pod_log.write_text(output, encoding="utf-8")

    status = parse_port_status(output)
    if status is not None:
        logger.info("   Successfully checked port status with debug container")
    return status


def check_with_exec(
    pod: str, namespace: str, port: int, pod_log: Path, logger: logging.Logger
) -> Optional[PortStatus]:
    try:
        probe = k8s_utils.exec_in_pod(
            pod, namespace, ["sh", "-c", "command -v ss || command -v netstat"]
        )
    except RuntimeError as e:
        logger.debug(f"   Exec probe failed: {e}")
        return None
    if not probe.ok:
        return None

    logger.info("   Found networking tools in the container, using exec method...")
    try:
        listing = k8s_utils.exec_in_pod(
            pod, namespace, ["sh", "-c", "ss -lntp 2>/dev/null || netstat -tulpn 2>/dev/null"]
        )
    except RuntimeError as e:
        logger.debug(f"   Exec listing failed: {e}")
        return None
    Path(f"{pod_log}.exec").write_text(listing.output, encoding="utf-8")

    if port_in_socket_listing(listing.output, port):
        status = PortStatus.ENABLED
    else:
        status = PortStatus.DISABLED
    with open(pod_log, "a", encoding="utf-8") as f:
        f.write(_status_marker(status))
    logger.info("   Port check completed using exec method")
    return status


def check_with_port_forward(
    pod: str, namespace: str, port: int, pod_log: Path, logger: logging.Logger
) -> PortStatus:
    logger.info("   Attempting port-forward method as last resort...")
    local_port = 10000 + os.getpid() % 50000
    proc = k8s_utils.port_forward(pod, namespace, local_port, port)
    time.sleep(PORT_FORWARD_SETTLE_SECONDS)

    if proc.poll() is None:
        status = PortStatus.ENABLED
        k8s_utils.stop_process(proc)
    else:
        status = PortStatus.DISABLED

    with open(pod_log, "a", encoding="utf-8") as f:
        f.write(_status_marker(status))
    logger.info("   Port check completed using port-forward method")
    return status


def check_pod_port(
    pod: str, namespace: str, port: int, log_dir: Path, logger: logging.Logger
) -> Optional[PortStatus]:
    pod_log = log_dir / f"{pod}.log"

    status = check_with_debug_container(pod, namespace, port, pod_log, logger)
    if status is not None:
        return status

    logger.info("   Debug container method failed, trying exec method...")
    status = check_with_exec(pod, namespace, port, pod_log, logger)
    if status is not None:
        return status

    logger.info("   ❌ No networking tools available in container and debug container failed")
    return check_with_port_forward(pod, namespace, port, pod_log, logger)


def evaluate(
    mode: ExpectedMode, status: Optional[PortStatus], tally: PortCheckTally, port: int = 6666
) -> str:
    """Update the tally with one pod's result and return the line to report."""
    if status is None:
        tally.errors += 1
        return "   ❌ Failed to determine port status after all methods"

    if mode == ExpectedMode.CHECK:
        if status == PortStatus.ENABLED:
            tally.enabled += 1
        else:
            tally.disabled += 1
        return f"   ℹ️ Port {port} is {status.value}"

    if status.value.lower() == mode.value:
        tally.passed += 1
        return f"   ✅ Port {port} is {status.value} as expected"

    tally.failed += 1
    return f"   ❌ Port {port} is {status.value} but expected {mode.value}"


def exit_code(mode: ExpectedMode, tally: PortCheckTally) -> int:
    if mode == ExpectedMode.CHECK:
        return 0
    return 0 if tally.failed == 0 and tally.errors == 0 else 1


def summary_lines(mode: ExpectedMode, tally: PortCheckTally, pod_count: int) -> List[str]:
    lines = [
        "=" * 58,
        "SUMMARY REPORT",
        "=" * 58,
        f"Mode: {mode.value}",
        f"Total pods checked: {pod_count}",
    ]
    if mode == ExpectedMode.CHECK:
        lines += [
            f"Enabled: {tally.enabled}/{pod_count}",
            f"Disabled: {tally.disabled}/{pod_count}",
            f"Errors: {tally.errors}/{pod_count}",
        ]
        return lines

    lines += [
        f"Passed: {tally.passed}/{pod_count}",
        f"Failed: {tally.failed}/{pod_count}",
        f"Errors: {tally.errors}/{pod_count}",
    ]
    if exit_code(mode, tally) == 0:
        lines.append(f"✅ All pods match expected state: {mode.value}")
    else:
        lines.append(f"❌ Some pods do not match expected state: {mode.value}")
    return lines


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    settings = load_settings_or_exit()
    parser = argparse.ArgumentParser(
        description="Check whether a port is listening in every Rancher pod",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "mode",
        nargs="?",
        default=ExpectedMode.CHECK.value,
        choices=[m.value for m in ExpectedMode],
        help="Expected port state, or 'check' to only report it",
    )
    parser.add_argument("--namespace", default=settings.namespace, help="Rancher namespace")
    parser.add_argument(
        "--port", type=port_number, default=settings.port, help="Port to check"
    )
    parser.add_argument(
        "--log-dir",
        default=None,
        help="Directory for logs (default: ./rancher-port-check-<timestamp>)",
    )
    parser.add_argument("--kubeconfig", default=settings.kubeconfig, help="Kubeconfig file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(args)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    mode = ExpectedMode(args.mode)

    if args.log_dir:
        log_dir = Path(args.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
    else:
        log_dir = make_run_dir("rancher-port-check")

    logger = get_logger("rancher_probes.port_check", args.debug, log_file=log_dir / "main.log")

    logger.info("=" * 58)
    logger.info(f"Rancher Port Checker - Started at {datetime.now():%c}")
    logger.info(f"Mode: {mode.value}")
    logger.info(f"Log directory: {log_dir}")
    logger.info("=" * 58)

    if check_required_tools(["kubectl"]):
        logger.error("❌ Error: kubectl is not installed or not in PATH")
        sys.exit(1)

    try:
        k8s_utils.configure(resolve_kubeconfig(args.kubeconfig))
    except (FileNotFoundError, ConfigException) as e:
        logger.error(f"❌ Error: {e}")
        sys.exit(1)
    logger.info(f"Executing with kubectl context: {k8s_utils.current_context()}")

    try:
        if not k8s_utils.namespace_exists(args.namespace):
            logger.error(f"❌ Error: {args.namespace} namespace not found")
            sys.exit(1)

        logger.info(f"📋 Retrieving Rancher pods from {args.namespace} namespace...")
        pods = k8s_utils.list_pod_names(args.namespace, name_prefix=RANCHER_POD_PREFIX)
    except RuntimeError as e:
        logger.error(f"❌ Error: {e}")
        sys.exit(1)

    if not pods:
        logger.error(f"❌ Error: No Rancher pods found in {args.namespace} namespace")
        sys.exit(1)
    logger.info(f"✅ Found {len(pods)} Rancher pods")

    tally = PortCheckTally()
    for pod in pods:
        logger.info(f"🔍 Processing pod: {pod}")
        try:
            phase = k8s_utils.get_pod_phase(pod, args.namespace)
        except RuntimeError as e:
            logger.warning(f"   ⚠️ {e}")
            phase = "Unknown"
        if phase != "Running":
            logger.warning(f"   ⚠️ Pod {pod} is not in Running state (current: {phase})")
            logger.info("   Skipping...")
            tally.errors += 1
            continue

        status = check_pod_port(pod, args.namespace, args.port, log_dir, logger)
        logger.info(evaluate(mode, status, tally, args.port))
        if status is None:
            logger.info(f"   Check logs at {log_dir / f'{pod}.log'} for details")

    for line in summary_lines(mode, tally, len(pods)):
        logger.info(line)
    logger.info(f"Detailed logs available in: {log_dir}")
    logger.info(f"Rancher Port Checker - Finished at {datetime.now():%c}")

    sys.exit(exit_code(mode, tally))


if __name__ == "__main__":
    main()
