"""
Find and remove stray /usr/local/bin/vai-query binaries left in Rancher pods.

Without options every pod holding the binary is reported and the operator is asked
before it is deleted. --auto-mode deletes without asking; --dry-run changes nothing.
"""
import argparse
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from kubernetes.config import ConfigException
from rich.console import Console
from rich.markup import escape

from rancher_probes import k8s_utils
from rancher_probes.common import check_rancher_prerequisites, format_duration
from rancher_probes.config_loader import load_settings_or_exit, resolve_kubeconfig

RANCHER_NAMESPACE = "cattle-system"
RANCHER_POD_PREFIX = "rancher-"
EXCLUDED_POD_SUBSTRINGS = ("webhook", "upgrade")
VAI_QUERY_PATH = "/usr/local/bin/vai-query"
RULE = "=" * 47


@dataclass
class CleanupTally:
    total: int = 0
    found: int = 0
    deleted: int = 0
    kept: int = 0


def _exec(pod: str, script: str) -> k8s_utils.ExecResult:
    return k8s_utils.exec_in_pod(pod, RANCHER_NAMESPACE, ["sh", "-c", script])


def binary_exists(pod: str) -> bool:
    result = _exec(pod, f"if [ -f {VAI_QUERY_PATH} ]; then echo found; else echo not-found; fi")
    return result.stdout.strip() == "found"


def describe_binary(pod: str, console: Console) -> None:
    """Print listing, age and file type of the binary."""
    listing = _exec(pod, f"ls -la {VAI_QUERY_PATH}").output.strip()
    console.print(f"[yellow]File details:[/yellow] {escape(listing)}")

    mtime_output = _exec(pod, f"stat -c %Y {VAI_QUERY_PATH} 2>/dev/null").stdout.strip()
    if mtime_output.isdigit():
        mtime = int(mtime_output)
        age = format_duration(int(time.time()) - mtime)
        modified = datetime.fromtimestamp(mtime).strftime("%Y-%m-%d %H:%M:%S")
        console.print(f"[yellow]File age:[/yellow] {age} (created/modified at {modified})")
    else:
        console.print("[yellow]File age:[/yellow] Could not determine")

    file_type = _exec(pod, f"file {VAI_QUERY_PATH}").output.strip()
    console.print(f"[yellow]File type:[/yellow] {escape(file_type)}")


def delete_binary(pod: str, console: Console) -> bool:
    result = _exec(pod, f"rm -f {VAI_QUERY_PATH}")
    if result.ok:
        console.print("[green]✅ Successfully deleted vai-query[/green]")
        return True
    console.print(
        f"[red]❌ Failed to delete vai-query (exit code: {result.returncode})[/red]"
    )
    console.print(f"[red]Error: {escape(result.output.strip())}[/red]")
    return False


def verify_removed(pod: str, console: Console) -> bool:
    if binary_exists(pod):
        console.print("[red]⚠️ Warning: vai-query might still exist despite deletion attempt[/red]")
        return False
    console.print("[green]✅ Verified: vai-query has been removed[/green]")
    return True


def ask_delete(console: Console) -> bool:
    try:
        answer = console.input(escape("Delete vai-query from this pod? [y/N]: "))
    except EOFError:
        return False
    return answer.strip() in ("y", "Y")


def process_pod(
    pod: str, auto_mode: bool, dry_run: bool, tally: CleanupTally, console: Console
) -> None:
    tally.total += 1
    console.print(f"\n[bold]=== 🔍 Checking pod: [blue]{pod}[/blue] ===[/bold]")

    if not binary_exists(pod):
        console.print("[green]✅ vai-query not found in this pod[/green]")
        return

    tally.found += 1
    console.print("[red]⚠️ vai-query found in this pod![/red]")
    describe_binary(pod, console)

    if auto_mode:
        if dry_run:
            console.print(f"[blue]\\[DRY RUN] Would delete vai-query from pod {pod}[/blue]")
            return
        console.print(f"[red]Automatically deleting vai-query from pod {pod}...[/red]")
        if delete_binary(pod, console):
            tally.deleted += 1
        return

    if dry_run:
        console.print(
            f"[blue]\\[DRY RUN] Would ask whether to delete vai-query from pod {pod}[/blue]"
        )
        return

    if not ask_delete(console):
        console.print("[blue]Keeping vai-query in this pod[/blue]")
        tally.kept += 1
        return

    console.print(f"[red]Deleting vai-query from pod {pod}...[/red]")
    if delete_binary(pod, console):
        tally.deleted += 1
        verify_removed(pod, console)


def print_summary(tally: CleanupTally, auto_mode: bool, dry_run: bool, console: Console) -> None:
    console.print("\n[bold]=== 📊 SUMMARY ===[/bold]")
    console.print(f"Total pods checked: [blue]{tally.total}[/blue]")
    console.print(f"Pods with vai-query: [yellow]{tally.found}[/yellow]")
    if auto_mode and not dry_run:
        console.print(
            f"Action taken: [red]Automatically deleted {tally.deleted} vai-query instance(s)[/red]"
        )
    elif dry_run:
        console.print("Action taken: [blue]Dry run - no changes made[/blue]")
    else:
        console.print(f"Deleted instances: [red]{tally.deleted}[/red]")
        console.print(f"Kept instances: [green]{tally.kept}[/green]")


def parse_args(args: Optional[List[str]] = None) -> argparse.Namespace:
    settings = load_settings_or_exit()
    parser = argparse.ArgumentParser(
        description="Detect and delete vai-query binaries in Rancher pods",
        epilog=(
            "Without options every instance is reported and you are asked before deletion."
        ),
    )
    parser.add_argument(
        "-a",
        "--auto-mode",
        action="store_true",
        help="Delete all instances without prompting",
    )
    parser.add_argument(
        "-d",
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    parser.add_argument("--kubeconfig", default=settings.kubeconfig, help="Kubeconfig file")
    return parser.parse_args(args)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    console = Console(highlight=False)

    console.print("[bold]VAI-Query detector for Rancher pods[/bold]")
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

    if args.auto_mode and not args.dry_run:
        console.print("[yellow]Running in AUTO MODE - will delete all vai-query instances[/yellow]")
    elif args.dry_run:
        console.print("[blue]Running in DRY RUN mode - no changes will be made[/blue]")
    else:
        console.print("[green]Running in INTERACTIVE mode - will ask for confirmation[/green]")

    console.print(f"\n[bold]Fetching Rancher pods in {RANCHER_NAMESPACE} namespace...[/bold]")
    try:
        pods = k8s_utils.list_pod_names(
            RANCHER_NAMESPACE,
            name_prefix=RANCHER_POD_PREFIX,
            exclude_substrings=EXCLUDED_POD_SUBSTRINGS,
        )
    except RuntimeError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        sys.exit(1)
    if not pods:
        console.print(
            f"[red]No matching Rancher pods found in {RANCHER_NAMESPACE} namespace[/red]"
        )
        sys.exit(1)
    console.print(f"Found {len(pods)} Rancher pods to check")

    tally = CleanupTally()
    for pod in pods:
        try:
            process_pod(pod, args.auto_mode, args.dry_run, tally, console)
        except RuntimeError as e:
            console.print(f"[red]❌ Could not check pod {pod}: {escape(str(e))}[/red]")

    print_summary(tally, args.auto_mode, args.dry_run, console)


if __name__ == "__main__":
    main()
