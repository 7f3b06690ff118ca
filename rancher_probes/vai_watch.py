"""
Watch a namespace propagate into the VAI cache of every Rancher pod.

Every interval the informer cache is copied out of each rancher pod and searched for the
namespace. The command stops as soon as every pod has it, and reports how long the
propagation took.
"""
import argparse
import shutil
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from kubernetes.config import ConfigException
from rich.console import Console
from rich.markup import escape

from rancher_probes import k8s_utils
from rancher_probes.common import check_rancher_prerequisites, format_mm_ss, make_time_stamp
from rancher_probes.config_loader import load_settings_or_exit, resolve_kubeconfig
from rancher_probes.vai_cache import CACHE_FILE_NAME, find_namespaces, is_usable_db

RANCHER_NAMESPACE = "cattle-system"
RANCHER_POD_PREFIX = "rancher-"
EXCLUDED_POD_SUBSTRINGS = ("webhook", "upgrade")
DEFAULT_CACHE_ROOT = "~/Downloads/rancher-caches"
RULE = "=" * 47


@dataclass
class WatchState:
    namespace_to_find: str
    start_time: float
    end_time: float
    first_found: Dict[str, float] = field(default_factory=dict)

    def propagation_seconds(self) -> int:
        if not self.first_found:
            return 0
        return int(max(self.first_found.values()) - min(self.first_found.values()))


def copy_cache(pod: str, pod_dir: Path, console: Console) -> Optional[Path]:
    """Copy the pod's cache file into pod_dir; None if the copy failed or is empty."""
    local_path = pod_dir / CACHE_FILE_NAME
    try:
        k8s_utils.copy_from_pod(pod, RANCHER_NAMESPACE, CACHE_FILE_NAME, str(local_path))
    except RuntimeError:
        console.print(f"[red]❌ Failed to copy cache from {pod}[/red]")
        return None

    if not is_usable_db(local_path):
        console.print(f"[red]⚠️  Warning: Copied file is empty for {pod}[/red]")
        local_path.unlink(missing_ok=True)
        return None

    console.print("📁 Cache file copied successfully")
    return local_path


def prune_snapshots(cache_root: Path, keep: int) -> List[Path]:
    """Delete all but the `keep` newest snapshot directories; returns the deleted ones."""
    if not cache_root.is_dir():
        return []
    snapshot_dirs = sorted(
        (path for path in cache_root.iterdir() if path.is_dir()),
        key=lambda path: path.stat().st_mtime,
        reverse=True,
    )
    removed = snapshot_dirs[keep:]
    for path in removed:
        shutil.rmtree(path, ignore_errors=True)
    return removed


def check_pods(
    iteration: int, state: WatchState, cache_root: Path, keep: int, console: Console
) -> bool:
    """
    Run one iteration over the rancher pods.

    Returns:
        True if every discovered pod has the namespace in its cache
    """
    base_dir = cache_root / make_time_stamp()
    base_dir.mkdir(parents=True, exist_ok=True)

    now = time.time()
    console.print(f"\n[bold]📊 Iteration {iteration} - {datetime.now():%Y-%m-%d %H:%M:%S}[/bold]")
    console.print(
        f"[yellow]⏱  Time elapsed: {format_mm_ss(now - state.start_time)} | "
        f"Remaining: {format_mm_ss(state.end_time - now)}[/yellow]"
    )

    try:
        pods = k8s_utils.list_pod_names(
            RANCHER_NAMESPACE,
            name_prefix=RANCHER_POD_PREFIX,
            exclude_substrings=EXCLUDED_POD_SUBSTRINGS,
        )
    except RuntimeError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        pods = []

    found_count = 0
    for pod in pods:
        console.print(f"\n[blue]🔍 Processing pod: {pod}[/blue]")
        pod_dir = base_dir / pod
        pod_dir.mkdir(parents=True, exist_ok=True)

        db_path = copy_cache(pod, pod_dir, console)
        if db_path is None:
            continue

        try:
            matches = find_namespaces(db_path, state.namespace_to_find)
        except RuntimeError as e:
            console.print(f"[red]⚠️  {escape(str(e))}[/red]")
            matches = []

        if not matches:
            console.print(f"[red]❌ No match in pod: {pod}[/red]")
            continue

        console.print(f"[green]✅ Found match in pod: {pod}[/green]")
        found_count += 1
        if pod not in state.first_found:
            state.first_found[pod] = time.time()
            console.print(
                f"[green]🎉 First appearance in {pod} at "
                f"{datetime.now():%Y-%m-%d %H:%M:%S}[/green]"
            )

    prune_snapshots(cache_root, keep)
    return bool(pods) and found_count == len(pods)


def print_propagation(state: WatchState, console: Console) -> None:
    console.print("\n[bold green]🎯 !!! NAMESPACE FOUND IN ALL PODS !!![/bold green]")
    console.print("[bold]Time to propagate across all pods:[/bold]")
    for pod, found_time in state.first_found.items():
        console.print(
            f"[blue]{pod}:[/blue] Found after [green]{int(found_time - state.start_time)} "
            f"seconds[/green]"
        )
    console.print(
        f"[bold]Total propagation time:[/bold] "
        f"[green]{state.propagation_seconds()} seconds[/green]"
    )
    console.print(RULE)


def print_final_summary(
    state: WatchState,
    actual_seconds: float,
    planned_minutes: int,
    early_exit: bool,
    cache_root: Path,
    console: Console,
) -> None:
    console.print("\n[bold]=== 📊 FINAL SUMMARY ===[/bold]")
    console.print(f"Search for: [blue]{escape(state.namespace_to_find)}[/blue]")
    if early_exit:
        planned_seconds = planned_minutes * 60
        percent_faster = (planned_seconds - actual_seconds) / planned_seconds * 100
        console.print("[green]✅ Successfully found in all pods![/green]")
        console.print(f"Planned duration: [yellow]{planned_minutes} minutes[/yellow]")
        console.print(f"Actual duration: [green]{actual_seconds / 60:.2f} minutes[/green]")
        console.print(f"Completed [green]{percent_faster:.1f}%[/green] faster than maximum time")
    else:
        console.print("[red]❌ Did not find namespace in all pods within time limit[/red]")
        console.print(
            f"Duration: [yellow]{planned_minutes} minutes[/yellow] (maximum time reached)"
        )

    console.print("\n[bold]Pod Discovery Timeline:[/bold]")
    for pod, found_time in state.first_found.items():
        console.print(
            f"[blue]{pod}:[/blue] Found after [green]{int(found_time - state.start_time)} "
            f"seconds[/green]"
        )

    if early_exit:
        console.print(
            f"\n[bold]Total propagation time:[/bold] "
            f"[green]{state.propagation_seconds()} seconds[/green]"
        )

    console.print("\n[bold]Cache files saved in:[/bold]")
    console.print(escape(f"{cache_root}/"))


def watch(
    namespace_to_find: str,
    duration_minutes: int,
    interval: int,
    cache_root: Path,
    keep: int,
    console: Console,
) -> bool:
    """
    Poll until the namespace is in every pod's cache or the duration runs out.

    Returns:
        True if the namespace was found in all pods before the deadline
    """
    start_time = time.time()
    state = WatchState(namespace_to_find, start_time, start_time + duration_minutes * 60)

    console.print(
        f"[bold]Starting search for namespace: [blue]{escape(namespace_to_find)}[/blue][/bold]"
    )
    console.print(
        f"Maximum runtime: [yellow]{duration_minutes} minutes[/yellow], checking every "
        f"[yellow]{interval} seconds[/yellow]"
    )
    console.print(f"Start time: [green]{datetime.now():%Y-%m-%d %H:%M:%S}[/green]")
    console.print(RULE)

    iteration = 1
    while time.time() < state.end_time:
        if check_pods(iteration, state, cache_root, keep, console):
            print_propagation(state, console)
            print_final_summary(
                state, time.time() - start_time, duration_minutes, True, cache_root, console
            )
            return True

        wait_seconds = min(interval, state.end_time - time.time())
        if wait_seconds > 0:
            with console.status(f"Waiting for next check... ({datetime.now():%H:%M:%S})"):
                time.sleep(wait_seconds)
        iteration += 1

    print_final_summary(
        state, time.time() - start_time, duration_minutes, False, cache_root, console
    )
    return False


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError("Duration must be a positive number")
    return number


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    settings = load_settings_or_exit()
    parser = argparse.ArgumentParser(
        description="Watch a namespace appear in the VAI cache of every Rancher pod",
        epilog="Example: vai-watch-namespace myspace 5",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("namespace", help="The namespace to search for")
    parser.add_argument(
        "duration_minutes",
        nargs="?",
        type=_non_negative_int,
        default=3,
        help="Maximum time to keep checking, in minutes",
    )
    parser.add_argument("--interval", type=int, default=15, help="Seconds between checks")
    parser.add_argument(
        "--cache-root", default=DEFAULT_CACHE_ROOT, help="Where cache copies are stored"
    )
    parser.add_argument("--keep", type=int, default=3, help="Snapshot directories to keep")
    parser.add_argument("--kubeconfig", default=settings.kubeconfig, help="Kubeconfig file")
    return parser.parse_args(args)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    console = Console(highlight=False)
    cache_root = Path(args.cache_root).expanduser()

    console.print("[bold]Performing initial checks...[/bold]")
    console.print(RULE)
    try:
        k8s_utils.configure(resolve_kubeconfig(args.kubeconfig))
        prerequisites_met = check_rancher_prerequisites(console, RANCHER_NAMESPACE)
    except (FileNotFoundError, ConfigException) as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        prerequisites_met = False
    if not prerequisites_met:
        console.print("\n[bold red]Prerequisites check failed![/bold red]")
        console.print("Please install missing components and try again")
        sys.exit(1)
    console.print(RULE)

    found = watch(
        args.namespace, args.duration_minutes, args.interval, cache_root, args.keep, console
    )
    sys.exit(0 if found else 1)


if __name__ == "__main__":
    main()
