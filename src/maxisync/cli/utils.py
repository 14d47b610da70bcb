"""
CLI utility helpers: context construction and output formatting.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Coroutine
from dataclasses import asdict
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from maxisync.api.client import ApiClient
from maxisync.core.context import SyncContext, build_context
from maxisync.core.logging import configure_logging
from maxisync.core.settings import get_settings

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")


# ── Context helper ───────────────────────────────────────────────────────


def make_context(token: str | None = None, base_url: str | None = None) -> SyncContext:
    """Build a :class:`SyncContext` for a CLI command."""
    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_format == "json",
    )
    client = ApiClient(
        base_url or settings.api_base_url,
        timeout=settings.api_timeout_seconds,
        token=token,
    )
    return build_context(settings, client=client)


def run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / dict to plain dict."""
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def fail(message: str, *, code: str = "ERROR") -> None:
    err_console.print(f"[bold red]Error[/bold red] ({code}): {message}")
    raise typer.Exit(code=1)


def output_rows(rows: list[Any], *, as_json: bool = False, title: str = "") -> None:
    """Render a list of dicts/dataclasses to the terminal."""
    if as_json:
        console.print_json(json.dumps([_to_dict(r) for r in rows], default=str))
        return
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    _print_table(rows, title=title)


def output_dict(data: Any, *, as_json: bool = False, title: str = "") -> None:
    if as_json:
        console.print_json(json.dumps(_to_dict(data), default=str))
        return
    _print_dict(_to_dict(data), title=title)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list, *, title: str = "") -> None:
    """Render a list of dataclasses/dicts as a Rich table."""
    first = _to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(col, overflow="fold")
    for item in items:
        d = _to_dict(item)
        table.add_row(*(str(d.get(col, "")) for col in first))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
