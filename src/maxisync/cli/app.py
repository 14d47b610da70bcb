"""
Root Typer application for the maxisync CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from maxisync.cli.queue import app as queue_app
from maxisync.cli.utils import console, fail, make_context, output_dict, output_rows, run
from maxisync.core.enums import EntityKind
from maxisync.views.products import ProductsView

app = Typer(
    name="maxisync",
    help="maxisync: data synchronization core for the optical-lens POS client.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("maxisync")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"maxisync {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """maxisync CLI: inspect the cache, the backend and the offline queue."""


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("products")
def products(
    search: str | None = typer.Option(None, "--search", "-s", help="Filter by name or barcode"),
    token: str | None = typer.Option(None, "--token", envvar="MAXISYNC_TOKEN"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List products through the cache store."""
    ctx = make_context(token)

    async def _load():
        try:
            view = ProductsView(ctx)
            await view.mount()
            failed = ctx.cache.cache_stats()["errors"]
            rows = view.search(search) if search else view.rows
            view.unmount()
            return rows, failed
        finally:
            await ctx.client.aclose()

    rows, failed = run(_load())
    if failed and not rows:
        fail("Could not load products from the backend", code="NETWORK")
    output_rows(rows, as_json=json_out, title="Products")


@app.command("health")
def health(
    token: str | None = typer.Option(None, "--token", envvar="MAXISYNC_TOKEN"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Check backend reachability, cache and event bus health."""
    ctx = make_context(token)

    async def _check():
        try:
            backend = await ctx.client.health()
            await ctx.cache.get_data(EntityKind.PRODUCTS)
            return backend
        finally:
            await ctx.client.aclose()

    backend = run(_check())
    cache_health = ctx.cache.health_check()
    bus_health = ctx.bus.health_check()
    report = {
        "backend": "reachable" if not backend.is_connection_error else "unreachable",
        "backend_status": backend.status,
        "cache_healthy": cache_health["healthy"],
        "cache_issues": "; ".join(cache_health["issues"]) or "-",
        "bus_healthy": bus_health["healthy"],
        "bus_issues": "; ".join(bus_health["issues"]) or "-",
        "offline_pending": len(ctx.queue),
    }
    output_dict(report, as_json=json_out, title="Health")
    if not json_out:
        ok = backend.success and cache_health["healthy"] and bus_health["healthy"]
        console.print("[green]OK[/green]" if ok else "[yellow]DEGRADED[/yellow]")


app.add_typer(queue_app, name="queue", help="Offline operation queue.")
