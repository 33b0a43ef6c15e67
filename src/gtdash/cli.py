"""gtdash CLI: Gas Town dashboard from the terminal.

Usage:
    gtdash serve                          # Run the REST API
    gtdash serve --port 4000 -v           # Custom port, debug logging
    gtdash status                         # Agents and per-role summary
    gtdash crew                           # Crew workspaces
    gtdash rigs                           # Registered rigs
    gtdash inbox                          # Overseer inbox
    gtdash inbox gastown/crew/max         # Someone else's inbox
    gtdash poll --rig gastown             # New crew replies
    gtdash deacon                         # Deacon daemon status
    gtdash sweep --dry-run                # Preview orphaned beads
    gtdash refinery gastown --view blocked  # Refinery merge queue views
    gtdash config                         # Show configuration
    gtdash config timeouts.nudge=15       # Set configuration
"""

import asyncio
import json
import logging
import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from gtdash import __version__
from gtdash.config import DashboardConfig, ensure_gtdash_home
from gtdash.errors import DashboardError
from gtdash.models import CrewStatus
from gtdash.service import DashboardService

console = Console()

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def _run_async(coro):
    """Run async function from sync context."""
    return asyncio.run(coro)


def _call(coro):
    """Run a service call; domain errors become a red message and exit 1."""
    try:
        return _run_async(coro)
    except DashboardError as e:
        console.print(f"[bold red]{e.kind.value}:[/] {e.message}")
        if e.details:
            console.print(f"[dim]{e.details}[/]")
        sys.exit(1)


def _service() -> DashboardService:
    return DashboardService(DashboardConfig.load())


def _flag(value: bool, on: str = "green", off: str = "dim") -> str:
    return f"[{on}]yes[/]" if value else f"[{off}]no[/]"


@click.group()
@click.version_option(__version__, prog_name="gtdash")
def cli():
    """gtdash: operational dashboard for a Gas Town deployment."""
    pass


# --- Server ---


@cli.command()
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", type=int, default=None, help="Port (default from config)")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def serve(host, port, verbose):
    """Run the REST API server in the foreground."""
    from gtdash.server import run_server

    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
    cfg = DashboardConfig.load()
    host = host or cfg.server.host
    port = port or cfg.server.port
    console.print(f"[bold blue]gtdash[/] serving on http://{host}:{port}\n")
    run_server(DashboardService(cfg), host, port)


# --- Status ---


@cli.command()
def status():
    """Show agents and a per-role summary."""
    service = _service()

    async def _collect():
        return (
            await service.town_status(),
            await service.status_summary(),
            await service.mayor_status(),
        )

    town, summary, mayor = _call(_collect())

    agents = Table(title=town.name)
    agents.add_column("Address")
    agents.add_column("Role")
    agents.add_column("Running")
    agents.add_column("Work")
    agents.add_column("Mail", justify="right")
    for agent in town.all_agents():
        agents.add_row(
            agent.address,
            agent.role.value,
            _flag(agent.running),
            _flag(agent.has_work, on="yellow"),
            str(agent.unread_mail),
        )
    if agents.row_count:
        console.print(agents)
    else:
        console.print("[dim]No agents reported[/]")

    roles = Table(show_header=True)
    roles.add_column("Role")
    roles.add_column("Total", justify="right")
    roles.add_column("Running", justify="right")
    roles.add_column("With work", justify="right")
    roles.add_column("Unread", justify="right")
    for role, s in sorted(summary.by_role.items()):
        roles.add_row(role, str(s.total), str(s.running), str(s.with_work), str(s.unread_mail))
    console.print(Panel(
        roles,
        title=(
            f"{summary.running_agents}/{summary.total_agents} running, "
            f"{summary.total_unread_mail} unread"
        ),
        border_style="blue",
    ))

    color = {"online": "green", "busy": "yellow"}.get(mayor.status.value, "red")
    line = f"Mayor: [{color}]{mayor.status.value}[/]"
    if mayor.session:
        line += (
            f"  uptime {mayor.session.uptime}, context {mayor.session.context_usage_percent}%, "
            f"last activity {mayor.session.last_activity}"
        )
    console.print(line)


@cli.command()
def crew():
    """List crew workspaces."""
    state = _call(_service().list_crew())
    if not state.members:
        console.print("[dim]No crew workspaces[/]")
        return

    table = Table(title="Crew")
    table.add_column("ID", style="dim")
    table.add_column("Status")
    table.add_column("Branch")
    table.add_column("Git")
    table.add_column("Mail", justify="right")
    table.add_column("Path", style="dim")
    for m in state.members:
        color = "green" if m.status is CrewStatus.RUNNING else "dim"
        git_color = "yellow" if m.git_status.value == "dirty" else "green"
        table.add_row(
            m.id,
            f"[{color}]{m.status.value}[/]",
            m.branch,
            f"[{git_color}]{m.git_status.value}[/]",
            str(m.mail_count),
            m.path,
        )
    console.print(table)


@cli.command()
def rigs():
    """List registered rigs."""
    all_rigs = _call(_service().list_rigs())
    if not all_rigs:
        console.print("[dim]No rigs registered[/]")
        return

    table = Table(title="Rigs")
    table.add_column("Name")
    table.add_column("State")
    table.add_column("Polecats", justify="right")
    table.add_column("Crew", justify="right")
    table.add_column("Agents")
    table.add_column("Git URL", style="dim")
    for rig in all_rigs:
        if rig.parked:
            state = "[yellow]parked[/]"
        elif rig.docked:
            state = "[blue]docked[/]"
        elif rig.running:
            state = "[green]running[/]"
        else:
            state = "[dim]stopped[/]"
        table.add_row(
            rig.name,
            state,
            str(rig.polecat_count),
            str(rig.crew_count),
            " ".join(rig.agents),
            rig.git_url,
        )
    console.print(table)


# --- Mail ---


@cli.command()
@click.argument("address", default="overseer")
@click.option("--threads", "-t", is_flag=True, help="Group into conversations")
def inbox(address, threads):
    """Show an inbox (default: overseer)."""
    service = _service()
    if threads:
        grouped = _call(service.mail_threads(address))
        if not grouped:
            console.print("[dim]No conversations[/]")
            return
        table = Table(title=f"Threads for {address}")
        table.add_column("Thread")
        table.add_column("Subject")
        table.add_column("Messages", justify="right")
        table.add_column("Unread", justify="right")
        table.add_column("Latest", style="dim")
        for t in grouped:
            table.add_row(t.id, t.subject[:50], str(len(t.messages)), str(t.unread_count), t.latest_timestamp)
        console.print(table)
        return

    messages = _call(service.mail_inbox(address))
    if not messages:
        console.print("[dim]Inbox empty[/]")
        return
    table = Table(title=f"Inbox: {address}")
    table.add_column("ID", style="dim")
    table.add_column("From")
    table.add_column("Subject")
    table.add_column("When", style="dim")
    for m in messages:
        subject = m.subject[:60] if m.read else f"[bold]{m.subject[:60]}[/]"
        table.add_row(m.id, m.sender, subject, m.timestamp)
    console.print(table)


@cli.command()
@click.option("--rig", default=None, help="Only replies from this rig")
@click.option("--name", default=None, help="Only replies from this crew member")
@click.option("--interval", type=float, default=0, help="Keep polling every N seconds")
def poll(rig, name, interval):
    """Print crew replies not seen before in this session."""
    service = _service()

    async def _loop():
        while True:
            for m in await service.poll_crew_chat(rig, name):
                console.print(f"[dim]{m.timestamp}[/] [cyan]{m.sender}[/]: {m.content}")
            if interval <= 0:
                return
            await asyncio.sleep(interval)

    try:
        _call(_loop())
    except KeyboardInterrupt:
        pass


# --- Deacon ---


@cli.command()
def deacon():
    """Show deacon daemon status."""
    s = _call(_service().deacon_status())
    state = "[green]alive[/]" if s.alive else "[red]dead[/]"
    body = (
        f"State: {state}\n"
        f"PID: {s.pid or '-'}  Version: {s.version or '-'}\n"
        f"Uptime: {s.uptime_seconds if s.uptime_seconds is not None else '-'}s  "
        f"Interval: {s.interval}\n"
        f"Last activity: {s.last_activity or '-'}"
    )
    if s.error_logs:
        body += "\n\n[yellow]Recent errors:[/]\n" + "\n".join(s.error_logs)
    console.print(Panel(body, title="Deacon", border_style="green" if s.alive else "red"))


@cli.command()
@click.option("--dry-run", is_flag=True, help="Only list what would be closed")
def sweep(dry_run):
    """Close orphaned beads reported by `gt orphans`."""
    result = _call(_service().sweep(dry_run=dry_run))
    console.print_json(json.dumps(result.to_dict()))
    if not result.success:
        sys.exit(1)


@cli.command()
@click.argument("rig")
@click.option(
    "--view", type=click.Choice(["queue", "status", "blocked"]), default="queue", show_default=True
)
def refinery(rig, view):
    """Show a rig's refinery queue, status, or blocked merges."""
    result = _call(_service().refinery(rig, view))
    body = Text(result.output) if result.output else Text("empty", style="dim")
    console.print(Panel(body, title=f"Refinery {view}: {rig}"))


# --- Configuration ---


@cli.command()
@click.argument("key_value", nargs=-1)
def config(key_value):
    """View or set gtdash configuration.

    Examples:
        gtdash config                              # show all
        gtdash config paths.gt_base_path=/home/gt  # set Gas Town root
        gtdash config timeouts.nudge=15            # nudge timeout in seconds
    """
    cfg = DashboardConfig.load()
    if not key_value:
        console.print_json(json.dumps(cfg.to_dict()))
        return

    kv = " ".join(key_value)
    if "=" not in kv:
        console.print(f"[red]Expected key=value, got: {kv}[/]")
        sys.exit(1)
    key, value = kv.split("=", 1)
    key = key.strip()
    value = value.strip()
    try:
        cfg.set_value(key, value)
    except KeyError as e:
        console.print(f"[red]{e.args[0]}[/]")
        sys.exit(1)
    except ValueError:
        console.print(f"[red]Invalid value for {key}: {value}[/]")
        sys.exit(1)

    ensure_gtdash_home()
    cfg.save()
    console.print(f"[green]Set {key} = {value}[/]")


def main():
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
