"""ledgerpipe CLI.

Commands:
- init: Create database tables
- import: Import a CSV statement and wait for enrichment to finish
- list: List import sessions
- status: Show one import session
- cancel: Request cancellation of a processing session
- reprocess: Re-run enrichment on an import session and wait for it
- runs: List reprocess runs of a session
- compare: Show what a reprocess run changed
- recover: Fail sessions and runs orphaned by a crashed process
- serve: Run the HTTP API
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from ledgerpipe.config import get_config
from ledgerpipe.context import build_context
from ledgerpipe.core.logging import configure_logging
from ledgerpipe.db.connection import close_db, init_db
from ledgerpipe.db.filters import SessionFilter
from ledgerpipe.errors import LedgerPipeError
from ledgerpipe.models import ImportStatus, ReprocessComparison, RunStatus
from ledgerpipe.pipeline.service import ImportRequest
from ledgerpipe.recovery import run_recovery_sweep
from ledgerpipe.reprocess.manager import ReprocessOptions

app = typer.Typer(
    name="ledgerpipe",
    help="ledgerpipe - statement import and enrichment pipeline",
    no_args_is_help=True,
)

console = Console()

_STATUS_STYLE = {
    ImportStatus.PENDING.value: "dim",
    ImportStatus.PROCESSING.value: "cyan",
    ImportStatus.COMPLETED.value: "green",
    ImportStatus.FAILED.value: "red",
    ImportStatus.CANCELLED.value: "yellow",
}


def _run(coro: Awaitable[Any]) -> Any:
    """Run ``coro`` and dispose of the engine; library errors exit with code 1."""

    async def _wrapped():
        try:
            return await coro
        finally:
            await close_db()

    try:
        return asyncio.run(_wrapped())
    except LedgerPipeError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(code=1)


def _status(value: str) -> str:
    style = _STATUS_STYLE.get(value, "white")
    return f"[{style}]{value}[/{style}]"


def _print_session(session) -> None:
    table = Table(title=f"Import session {session.id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    table.add_row("Account", session.account_ref)
    table.add_row("Status", _status(session.status))
    if session.phase:
        table.add_row("Phase", f"{session.phase} ({session.phase_current}/{session.phase_total})")
    table.add_row("Imported / skipped", f"{session.imported_count} / {session.skipped_count}")
    table.add_row(
        "Tagged (learned/rule/pattern/model/bank/fallback)",
        f"{session.tagged_by_learned}/{session.tagged_by_rule}/{session.tagged_by_pattern}/"
        f"{session.tagged_by_model}/{session.tagged_by_bank_category}/{session.tagged_fallback}",
    )
    table.add_row("Tag failures", str(session.tag_failures))
    table.add_row("Names normalized", f"{session.names_normalized} ({session.name_failures} failed)")
    table.add_row("Matched", f"{session.records_matched} of {session.records_checked}")
    table.add_row(
        "Subscriptions / zombies",
        f"{session.subscriptions_found} / {session.zombies_detected}",
    )
    table.add_row(
        "Price increases / duplicates",
        f"{session.price_increases_detected} / {session.duplicates_detected}",
    )
    if session.total_duration_ms is not None:
        table.add_row("Duration", f"{session.total_duration_ms} ms")
    if session.error:
        table.add_row("Error", f"[red]{session.error}[/red]")
    console.print(table)


def _print_comparison(result: ReprocessComparison) -> None:
    comparison = result.comparison
    title = f"Session {result.session_id}, run #{result.run.run_number}"
    if result.baseline_run is not None:
        title += f" vs run #{result.baseline_run.run_number}"

    table = Table(title=title)
    table.add_column("Counter", style="cyan")
    table.add_column("Before", justify="right")
    table.add_column("After", justify="right")
    table.add_column("Delta", justify="right")
    for name, delta in comparison.deltas.items():
        if delta == 0:
            continue
        colour = "green" if delta > 0 else "red"
        table.add_row(
            name,
            str(comparison.before.counters.get(name, 0)),
            str(comparison.after.counters.get(name, 0)),
            f"[{colour}]{delta:+d}[/{colour}]",
        )
    console.print(table)

    if not comparison.changed_counters:
        console.print("[dim]No counters changed[/dim]")
    for change in comparison.tag_changes[:10]:
        console.print(f"  tags  {change.description}: {change.before} → {change.after}", style="dim")
    for change in comparison.name_changes[:10]:
        console.print(f"  name  {change.description}: {change.before} → {change.after}", style="dim")


@app.command()
def init():
    """Create database tables."""
    config = get_config()
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")
    _run(init_db())
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command(name="import")
def import_cmd(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV statement"),
    account: str = typer.Option(..., "--account", "-a", help="Account reference"),
    model: str | None = typer.Option(None, "--model", help="Model variant"),
    user: str | None = typer.Option(None, "--user", help="Recorded as initiated_by"),
):
    """Import a CSV statement and wait for enrichment to finish."""
    configure_logging(get_config())
    console.print(f"[bold]Importing:[/bold] {file} → {account}")

    async def _import():
        await init_db()
        ctx = build_context()
        outcome = await ctx.imports.import_statement(
            ImportRequest(
                account_ref=account,
                csv_data=file.read_bytes(),
                filename=file.name,
                model=model,
                initiated_by=user,
            )
        )
        console.print(
            f"  [green]✓[/green] {outcome.imported} imported, {outcome.skipped} duplicates skipped"
        )
        if outcome.errors:
            console.print(f"  [yellow]⚠[/yellow] {len(outcome.errors)} rows rejected")
            for err in outcome.errors[:5]:
                console.print(f"    row {err.row}: {err.message}", style="dim")

        with console.status("Enriching..."):
            await ctx.tasks.wait(outcome.session_id)
        _print_session(await ctx.tracker.get(outcome.session_id))

    _run(_import())


@app.command(name="list")
def list_cmd(
    account: str | None = typer.Option(None, "--account", "-a"),
    status: ImportStatus | None = typer.Option(None, "--status"),
    limit: int = typer.Option(20, "--limit"),
):
    """List import sessions, newest first."""

    async def _list():
        ctx = build_context()
        sessions, total = await ctx.tracker.list_sessions(
            SessionFilter(account_ref=account, status=status, limit=limit)
        )
        table = Table(title=f"Import sessions ({len(sessions)} of {total})")
        table.add_column("ID", justify="right")
        table.add_column("Account")
        table.add_column("File")
        table.add_column("Status")
        table.add_column("Imported", justify="right")
        table.add_column("Skipped", justify="right")
        table.add_column("Created")
        for s in sessions:
            table.add_row(
                str(s.id),
                s.account_ref,
                s.filename or "-",
                _status(s.status),
                str(s.imported_count),
                str(s.skipped_count),
                s.created_at.strftime("%Y-%m-%d %H:%M") if s.created_at else "-",
            )
        console.print(table)

    _run(_list())


@app.command()
def status(session_id: int = typer.Argument(..., help="Import session ID")):
    """Show progress and counters of one import session."""

    async def _status_cmd():
        _print_session(await build_context().tracker.get(session_id))

    _run(_status_cmd())


@app.command()
def cancel(session_id: int = typer.Argument(..., help="Import session ID")):
    """Request cancellation; the running phase finishes first."""

    async def _cancel():
        return await build_context().tracker.request_cancel(session_id)

    if _run(_cancel()):
        console.print(f"[bold green]✓[/bold green] Cancellation requested for session {session_id}")
    else:
        console.print(
            f"[yellow]⚠[/yellow] Session {session_id} is not processing, or has already "
            "finished its last phase"
        )


@app.command()
def reprocess(
    session_id: int = typer.Argument(..., help="Import session ID"),
    model: str | None = typer.Option(None, "--model", help="Model variant"),
    reason: str | None = typer.Option(None, "--reason"),
    user: str | None = typer.Option(None, "--user", help="Recorded as initiated_by"),
):
    """Re-run enrichment on an import session and show what changed."""
    configure_logging(get_config())

    async def _reprocess():
        ctx = build_context()
        ticket = await ctx.reprocess.start_reprocess(
            session_id, ReprocessOptions(model=model, reason=reason, initiated_by=user)
        )
        console.print(f"[bold]Reprocess run #{ticket.run_number}[/bold] started")
        with console.status("Enriching..."):
            await ctx.tasks.wait(session_id)

        run = await ctx.reprocess.get_run(ticket.run_id)
        if run.status != RunStatus.COMPLETED.value:
            console.print(f"[bold red]✗[/bold red] Run #{run.run_number} {run.status}: {run.error}")
            raise typer.Exit(code=1)
        _print_comparison(await ctx.reprocess.compare(ticket.run_id))

    _run(_reprocess())


@app.command()
def runs(session_id: int = typer.Argument(..., help="Import session ID")):
    """List reprocess runs of a session."""

    async def _runs():
        summaries = await build_context().reprocess.list_runs(session_id)
        table = Table(title=f"Reprocess runs for session {session_id}")
        table.add_column("Run", justify="right")
        table.add_column("Status")
        table.add_column("Model")
        table.add_column("Counters changed", justify="right")
        table.add_column("Tag changes", justify="right")
        table.add_column("Name changes", justify="right")
        table.add_column("Error")
        for run in summaries:
            table.add_row(
                f"#{run.run_number}",
                run.status.value,
                run.model_variant or "-",
                "-" if run.counters_changed is None else str(run.counters_changed),
                "-" if run.tag_changes is None else str(run.tag_changes),
                "-" if run.name_changes is None else str(run.name_changes),
                run.error or "",
            )
        console.print(table)

    _run(_runs())


@app.command()
def compare(
    session_id: int = typer.Argument(..., help="Import session ID"),
    run_id: int | None = typer.Option(None, "--run", help="Run ID (latest completed by default)"),
    against: int | None = typer.Option(None, "--against", help="Baseline run ID"),
    initial: bool = typer.Option(False, "--initial", help="Compare with the state before run #1"),
):
    """Show the before/after comparison of a reprocess run."""

    async def _compare():
        manager = build_context().reprocess
        if against is not None:
            if run_id is None:
                raise typer.BadParameter("--against needs --run")
            return await manager.compare_runs(against, run_id)
        if initial:
            if run_id is None:
                raise typer.BadParameter("--initial needs --run")
            return await manager.compare_to_initial(session_id, run_id)
        return await manager.comparison_for_session(session_id, run_id)

    _print_comparison(_run(_compare()))


@app.command()
def recover():
    """Fail sessions and runs left unfinished by a process that died.

    Only run this while no server is processing against the same database.
    """
    configure_logging(get_config())

    async def _recover():
        await init_db()
        return await run_recovery_sweep()

    report = _run(_recover())
    console.print(
        f"[bold green]✓[/bold green] {report.sessions_recovered} session(s) and "
        f"{report.runs_recovered} run(s) marked failed"
    )
    if report.errors:
        console.print(f"[yellow]⚠[/yellow] {report.errors} row(s) could not be recovered (see log)")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
):
    """Run the HTTP API."""
    import uvicorn

    console.print(f"[bold]Serving ledgerpipe on[/bold] http://{host}:{port}")
    uvicorn.run("ledgerpipe.web.app:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
