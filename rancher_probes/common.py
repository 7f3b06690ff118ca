import random
import re
import shutil
import string
import sys
import time
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Union

from rich.console import Console
from rich.markup import escape

from rancher_probes import k8s_utils

DNS_LABEL_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


class Colors(Enum):
    """ANSI color codes for terminal output"""

    RED = "\033[1;31m"
    GREEN = "\033[1;32m"
    YELLOW = "\033[1;33m"
    BLUE = "\033[1;34m"
    BOLD = "\033[1m"
    RESET = "\033[0m"


def check_required_tools(tools: Iterable[str]) -> List[str]:
    """Return the tools that are not available on PATH."""
    return [tool for tool in tools if shutil.which(tool) is None]


def make_time_stamp() -> str:
    return time.strftime("%Y%m%d_%H%M%S", time.localtime())


def make_run_dir(prefix: str, base: Union[str, Path] = ".") -> Path:
    """Create and return a timestamped directory: <base>/<prefix>-<timestamp>."""
    run_dir = Path(base) / f"{prefix}-{make_time_stamp()}"
    run_dir.mkdir(parents=True, exist_ok=True)
    return run_dir


def generate_run_id(length: int = 6) -> str:
    """Random lower-case alphanumeric id, usable inside Kubernetes object names."""
    alphabet = string.ascii_lowercase + string.digits
    return "".join(random.choice(alphabet) for _ in range(length))


def is_valid_dns_label(name: str) -> bool:
    return len(name) <= 63 and DNS_LABEL_RE.match(name) is not None


def make_test_namespace_name(prefix: str, run_id: str) -> str:
    """
    Build "<prefix>-<run_id>", falling back to "<prefix>-x<run_id>" when the first form
    is not a valid namespace name.
    """
    name = f"{prefix}-{run_id}"
    if not is_valid_dns_label(name):
        print(f"Generated namespace name {name} is invalid. Using fallback name.")
        name = f"{prefix}-x{run_id}"
    return name


def prompt_yes_no(question: str, default: Optional[bool] = None) -> Optional[bool]:
    """
    Ask a y/n question until a valid answer is given.

    Returns None when no terminal input is available (stdin closed or piped), so callers
    can fall back to a non-interactive path. An empty answer returns `default` when set.
    """
    if not sys.stdin or not sys.stdin.isatty():
        return None

    while True:
        try:
            response = (
                input(f"{Colors.BLUE.value}{question} (y/n){Colors.RESET.value} ").strip().lower()
            )
        except EOFError:
            return None
        if response in ("y", "yes"):
            return True
        if response in ("n", "no"):
            return False
        if not response and default is not None:
            return default
        print("Please answer y or n.")


def _plural(value: int, unit: str) -> str:
    return f"1 {unit}" if value == 1 else f"{value} {unit}s"


def format_duration(seconds: int) -> str:
    """Human readable duration, e.g. "1 day, 2 hours, 1 minute, 5 seconds"."""
    seconds = max(int(seconds), 0)
    days, remainder = divmod(seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, secs = divmod(remainder, 60)

    parts = []
    if days:
        parts.append(_plural(days, "day"))
    if hours:
        parts.append(_plural(hours, "hour"))
    if minutes:
        parts.append(_plural(minutes, "minute"))
    parts.append(_plural(secs, "second"))
    return ", ".join(parts)


def format_mm_ss(seconds: float) -> str:
    minutes, secs = divmod(max(int(seconds), 0), 60)
    return f"{minutes:02d}:{secs:02d}"


def check_rancher_prerequisites(console: Console, namespace: str = "cattle-system") -> bool:
    """Check kubectl, cluster access and the Rancher namespace, printing one line per check."""
    console.print("[bold]Checking prerequisites...[/bold]")
    if check_required_tools(["kubectl"]):
        console.print("[red]❌ kubectl not found[/red]")
        console.print("Please install kubectl and ensure it's in your PATH")
        return False
    console.print("[green]✅ kubectl found[/green]")

    if not k8s_utils.check_cluster_access():
        console.print("[red]❌ Cannot connect to Kubernetes cluster[/red]")
        console.print("Please check your cluster connection and kubectl configuration")
        return False
    console.print("[green]✅ Kubernetes cluster is accessible[/green]")

    try:
        namespace_found = k8s_utils.namespace_exists(namespace)
    except RuntimeError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        return False
    if not namespace_found:
        console.print(f"[red]❌ {namespace} namespace not found[/red]")
        console.print("Please ensure you're connected to a Rancher cluster")
        return False
    console.print(f"[green]✅ {namespace} namespace found[/green]")
    return True
