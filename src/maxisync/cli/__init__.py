"""
CLI layer for maxisync.

Provides a Typer application whose commands build a ``SyncContext`` and
delegate to the cache store, API client and offline queue. This package
handles only terminal transport: argument parsing, coloured output, and
table formatting.

Entry point::

    maxisync --help
"""

from maxisync.cli.app import app

__all__ = ["app"]
