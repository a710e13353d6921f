import json
import time
from datetime import datetime

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from snapback.config import find_config, init_config, load_config, save_global_config
from snapback.errors import SnapbackError
from snapback.log import LOGS_FILE, read_logs
from snapback.models import DiffDecision
from snapback.orchestrator import Restorer
from snapback.tracing import format_duration

_DECISION_STYLE = {
    DiffDecision.RESTORE: "[green]restore[/green]",
    DiffDecision.OVERWRITE: "[yellow]overwrite[/yellow]",
    DiffDecision.DELETE_EXTRANEOUS: "[red]delete[/red]",
}


def _fail(console, message):
    console.print(f"[red]{escape(str(message))}[/red]")
    raise SystemExit(1)


def _fmt_time(dt):
    return dt.astimezone().strftime("%Y-%m-%d %H:%M")


def _restorer(console, warn_pending=True):
    """Build a Restorer from config. Warns if an interrupted restore is waiting."""
    try:
        restorer = Restorer(load_config(), console=console)
    except (SnapbackError, ValueError) as e:
        _fail(console, e)
    if warn_pending:
        pending = restorer.check_pending_restore()
        if pending:
            console.print(
                f"[bold yellow]An interrupted restore of {pending.target_path} is pending.[/bold yellow]"
                "\n  Run [bold]snapback pending[/bold] to resume or abandon it.\n"
            )
    return restorer


@click.group()
@click.version_option(version="0.1.0")
def main():
    """snapback: snapshot a volume, restore one job folder from a snapshot."""


@main.command()
@click.option("--volume", default=None, help="Volume to snapshot (default /).")
@click.option("--jobs-root", default=None, help="Directory holding the job folders.")
@click.option("--provider", type=click.Choice(["local", "btrfs", "native"]), default=None)
def init(volume, jobs_root, provider):
    """Create .snapbackconfig in the current directory."""
    if find_config():
        click.echo(".snapbackconfig already exists.")
        return
    config_path = init_config(volume=volume, jobs_root=jobs_root, provider=provider)
    click.echo(f"Created {config_path}")


@main.command("config")
@click.argument("key")
@click.argument("value")
def config_cmd(key, value):
    """Set a machine-wide option in ~/.snapback/config.json.

    Examples:
        snapback config provider btrfs
        snapback config snapshot_ttl_hours 48
    """
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    save_global_config({key: parsed})
    click.echo(f"Saved {key} to ~/.snapback/config.json")


@main.command()
@click.argument("description", required=False)
def create(description):
    """Take a snapshot of the configured volume."""
    console = Console()
    with _restorer(console) as restorer:
        console.print(f"[bold]Creating snapshot of {restorer.volume}...[/bold]")
        t0 = time.time()
        try:
            snap = restorer.create_snapshot(description)
        except SnapbackError as e:
            _fail(console, f"Failed to create snapshot:\n{e}")

    console.print("[bold green]Snapshot created successfully.[/bold green]")
    console.print(f"  ID:       [cyan]{snap.id}[/cyan]")
    console.print(f"  Expires:  {_fmt_time(snap.expires_at)}")
    console.print(f"  Duration: {format_duration(time.time() - t0)}")


@main.group(invoke_without_command=True)
@click.pass_context
def snapshots(ctx):
    """List snapshots. Expired snapshots are deleted first."""
    if ctx.invoked_subcommand is not None:
        return

    console = Console()
    with _restorer(console) as restorer:
        t0 = time.time()
        try:
            snapshot_list, failures = restorer.load_snapshots()
        except SnapbackError as e:
            _fail(console, f"Failed to load snapshots:\n{e}")

    for snap, error in failures:
        console.print(f"[yellow]Could not delete expired snapshot {snap.id}: {error}[/yellow]")

    if not snapshot_list:
        console.print("[dim]No snapshots found.[/dim]")
        return

    table = Table(title="Snapshots")
    table.add_column("ID", style="bold cyan")
    table.add_column("Description")
    table.add_column("Created", style="dim")
    table.add_column("Expires", style="dim")

    for s in snapshot_list:
        table.add_row(s.id, s.description, _fmt_time(s.created_at), _fmt_time(s.expires_at))

    console.print(table)
    console.print(f"[dim]Loaded {len(snapshot_list)} snapshot(s) ({format_duration(time.time() - t0)})[/dim]")


@snapshots.command("clean")
@click.option("--all", "delete_all", is_flag=True, help="Delete all snapshots.")
@click.option("--expired", is_flag=True, help="Delete only expired snapshots.")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt.")
def snapshots_clean(delete_all, expired, yes):
    """Delete snapshots. Use --all or --expired."""
    console = Console()

    if delete_all == expired:
        _fail(console, "Specify exactly one of --all or --expired.")

    with _restorer(console) as restorer:
        try:
            if expired:
                survivors, failures = restorer.load_snapshots()
                for snap, error in failures:
                    console.print(f"  [yellow]Failed[/yellow] {snap.id}: {error}")
                console.print(f"[bold green]Done. {len(survivors)} snapshot(s) remain.[/bold green]")
                return

            targets = restorer.list_snapshots()
            if not targets:
                console.print("[dim]No snapshots to delete.[/dim]")
                return

            console.print(f"[bold]About to delete {len(targets)} snapshot(s):[/bold]")
            for s in targets:
                console.print(f"  [cyan]{s.id}[/cyan]  {s.description}  [dim]{_fmt_time(s.created_at)}[/dim]")

            if not yes and not click.confirm("\nDelete these snapshots?", default=False):
                console.print("[dim]Cancelled.[/dim]")
                return

            deleted, failures = restorer.delete_all_snapshots()
        except SnapbackError as e:
            _fail(console, f"Failed to delete snapshots:\n{e}")

    for s in deleted:
        console.print(f"  [red]Deleted[/red] {s.id}")
    for s, error in failures:
        console.print(f"  [yellow]Failed[/yellow] {s.id}: {error}")
    console.print(f"[bold green]Done. {len(deleted)} snapshot(s) removed.[/bold green]")


@main.command()
@click.argument("snapshot_id")
def delete(snapshot_id):
    """Delete one snapshot. Deleting an already-deleted snapshot is not an error."""
    console = Console()
    with _restorer(console) as restorer:
        try:
            restorer.delete_snapshot(snapshot_id)
        except SnapbackError as e:
            _fail(console, f"Failed to delete snapshot {snapshot_id}:\n{e}")
    console.print(f"[red]Deleted[/red] {snapshot_id}")


@main.command()
def jobs():
    """List job folders under jobs_root."""
    console = Console()
    with _restorer(console, warn_pending=False) as restorer:
        job_dirs = restorer.list_jobs()
        if not job_dirs:
            console.print(f"[dim]No job folders in {restorer.jobs_root}.[/dim]")
            return
        for path in job_dirs:
            console.print(f"  [bold]{path.name}[/bold]  [dim]{path}[/dim]")


def _print_result(console, result):
    console.print(
        f"  restored {result.restored}, overwritten {result.overwritten}, "
        f"deleted {result.deleted}, unchanged {result.unchanged}"
    )
    if result.failures:
        console.print(f"[yellow]  {len(result.failures)} item(s) could not be deleted and were left in place:[/yellow]")
        for failure in result.failures:
            console.print(f"    [yellow]{failure}[/yellow]")


@main.command()
@click.argument("snapshot_id")
@click.argument("target")
@click.option("--dry-run", is_flag=True, help="Show what would change without touching anything.")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt.")
def restore(snapshot_id, target, dry_run, yes):
    """Restore a job folder (name under jobs_root, or a path) from a snapshot.

    The snapshot is deleted after a successful restore.

    Example: snapback restore 3f9c2a1b job-1042
    """
    console = Console()
    with _restorer(console) as restorer:
        target_path = restorer.job_path(target)

        if dry_run:
            try:
                changes = restorer.preview_restore(snapshot_id, target_path)
            except (SnapbackError, ValueError) as e:
                _fail(console, e)
            if not changes:
                console.print("[dim]Already matches the snapshot. Nothing to do.[/dim]")
                return
            for rel, decision in changes:
                console.print(f"  {_DECISION_STYLE[decision]}  {rel}")
            console.print(f"[dim]{len(changes)} change(s) in {target_path}[/dim]")
            return

        console.print(f"Restore [bold]{target_path}[/bold] from snapshot [bold]{snapshot_id}[/bold]?")
        console.print("[dim]New files in the folder will be deleted and the snapshot removed afterwards.[/dim]")
        if not yes and not click.confirm("Are you sure?", default=False):
            console.print("[dim]Cancelled.[/dim]")
            return

        t0 = time.time()
        try:
            result = restorer.restore(snapshot_id, target_path)
        except (SnapbackError, ValueError) as e:
            _fail(console, f"Failed to restore:\n{e}")

    console.print(f"[bold green]Restored {target_path} from snapshot {snapshot_id}.[/bold green]")
    _print_result(console, result)
    console.print(f"  Duration: {format_duration(time.time() - t0)}")
    console.print("  [dim]Snapshot has been deleted.[/dim]")


@main.command()
@click.option("--resume", "action", flag_value="resume", help="Retry the interrupted restore.")
@click.option("--abandon", "action", flag_value="abandon", help="Give up on the interrupted restore.")
def pending(action):
    """Show, resume or abandon an interrupted restore."""
    console = Console()
    with _restorer(console, warn_pending=False) as restorer:
        state = restorer.check_pending_restore()
        if state is None:
            last = restorer.last_restore()
            if last:
                console.print(
                    f"[dim]No interrupted restore. Last restore of {last.target_path} "
                    f"from {last.label} ended {last.status.value}.[/dim]"
                )
            else:
                console.print("[dim]No interrupted restore.[/dim]")
            return

        console.print("[bold yellow]A restore operation was interrupted:[/bold yellow]")
        console.print(f"  Snapshot: {state.label}")
        console.print(f"  Target:   {state.target_path}")
        console.print(f"  Started:  {_fmt_time(state.started_at)}")

        if action is None:
            action = "resume" if click.confirm("\nDo you want to retry the restore?", default=True) else "abandon"

        if action == "abandon":
            restorer.abandon_restore()
            console.print("[dim]Pending restore cancelled.[/dim]")
            return

        console.print(f"Resuming restore: {state.label}...")
        t0 = time.time()
        try:
            result = restorer.resume_restore()
        except (SnapbackError, ValueError) as e:
            _fail(console, f"Failed to resume restore:\n{e}")

    console.print("[bold green]Restore completed successfully.[/bold green]")
    _print_result(console, result)
    console.print(f"  Duration: {format_duration(time.time() - t0)}")
    console.print("  [dim]Snapshot has been deleted.[/dim]")


@main.command()
@click.option("-n", "--limit", default=20, help="Number of log entries to show.")
def logs(limit):
    """Show the audit log."""
    console = Console()

    entries = read_logs()
    if not entries:
        console.print(f"[dim]No logs yet ({LOGS_FILE}).[/dim]")
        return

    table = Table(title="Audit Log")
    table.add_column("Time", style="dim")
    table.add_column("Event", style="bold")
    table.add_column("Snapshot", style="cyan")
    table.add_column("Target", max_width=50)
    table.add_column("Detail")

    for entry in entries[-limit:]:
        ts = entry.get("timestamp", "")
        if ts:
            try:
                ts = datetime.fromisoformat(ts).strftime("%m-%d %H:%M")
            except ValueError:
                pass
        event = entry.get("event", "")
        if event == "restore_complete":
            partial = entry.get("partial_failures") or []
            detail = f"[green]{entry.get('restored', 0) + entry.get('overwritten', 0)} copied, {entry.get('deleted', 0)} deleted[/green]"
            if partial:
                detail += f" [yellow]{len(partial)} left behind[/yellow]"
        elif "error" in entry:
            detail = f"[red]{entry['error'].splitlines()[0] if entry['error'] else ''}[/red]"
        else:
            detail = entry.get("description", "")
        table.add_row(ts, event, entry.get("snapshot", ""), entry.get("target", ""), detail)

    console.print(table)
