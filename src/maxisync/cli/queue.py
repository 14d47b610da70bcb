"""
CLI: ``maxisync queue`` -- persisted offline queue commands.
"""

from __future__ import annotations

from datetime import datetime, timezone

import typer

from maxisync.cli.utils import console, make_context, output_dict, output_rows, run

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show(
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List pending and dead-lettered offline operations."""
    ctx = make_context()
    ctx.queue.restore()
    rows = [
        {
            "id": op.id,
            "state": state,
            "description": op.description,
            "queued_at": datetime.fromtimestamp(op.queued_at, tz=timezone.utc).isoformat(),
            "attempts": op.attempts,
            "last_error": op.last_error or "",
        }
        for state, ops in (("pending", ctx.queue.pending()), ("dead", ctx.queue.dead_letters()))
        for op in ops
    ]
    output_rows(rows, as_json=json_out, title="Offline Queue")


@app.command("replay")
def replay(
    token: str | None = typer.Option(None, "--token", envvar="MAXISYNC_TOKEN"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Replay the persisted offline queue against the backend."""
    ctx = make_context(token)

    async def _replay():
        try:
            ctx.queue.restore()
            return await ctx.queue.process_offline_queue()
        finally:
            await ctx.client.aclose()

    report = run(_replay())
    if not json_out:
        console.print(
            f"Replayed [green]{len(report.succeeded)}[/green], "
            f"failed [red]{len(report.failed)}[/red]"
        )
    output_dict(report.to_dict(), as_json=json_out, title="Replay")


@app.command("requeue")
def requeue(
    operation_id: str = typer.Argument(..., help="Dead-lettered operation ID"),
) -> None:
    """Move a dead-lettered operation back to the pending queue."""
    ctx = make_context()
    ctx.queue.restore()
    if not ctx.queue.requeue_dead_letter(operation_id):
        console.print(f"[red]No dead-lettered operation {operation_id}[/red]")
        raise typer.Exit(code=1)
    console.print(f"Requeued {operation_id}")
