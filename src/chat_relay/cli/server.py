"""CLI: chat-relay serve|history"""

import json
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from chat_relay.errors import StorageError
from chat_relay.store.base import open_store

console = Console()


def _load_settings(**overrides):
    from chat_relay.cli.main import _load_settings
    return _load_settings(**overrides)


def _run(coro):
    from chat_relay.cli.main import _run
    return _run(coro)


@click.command("serve")
@click.option("--host", default=None, help="Bind address (default: $HOST or 0.0.0.0)")
@click.option("--port", default=None, type=int, help="Listen port (default: $PORT or 3000)")
@click.option("--db-url", default=None, help="Log store URL (default: $DB_URL or file:chat.db)")
@click.option("--log-level", default=None, help="Logging level (default: $LOG_LEVEL or INFO)")
def serve(host: Optional[str], port: Optional[int], db_url: Optional[str], log_level: Optional[str]):
    """Run the chat relay server."""
    from chat_relay.app import serve as run_server
    from chat_relay.logging_config import setup_logging

    settings = _load_settings(host=host, port=port, db_url=db_url, log_level=log_level.upper() if log_level else None)
    setup_logging(settings.log_level)
    store_kind = "remote" if settings.is_remote else "local"
    console.print(f"[dim]Log store ({store_kind}): {settings.db_url}[/dim]")
    run_server(settings)


@click.command("history")
@click.option("--since", default=0, type=int, help="Only messages with a higher id")
@click.option("--db-url", default=None)
@click.option("--json-output", "--json", is_flag=True)
def history(since: int, db_url: Optional[str], json_output: bool):
    """Print the message log."""

    async def _history():
        settings = _load_settings(db_url=db_url)
        store = open_store(settings.db_url, settings.db_token)
        try:
            await store.open()
            return await store.read_since(since)
        finally:
            await store.close()

    try:
        records = _run(_history())
    except StorageError as e:
        console.print(f"[red]Cannot read the log: {e}[/red]")
        raise SystemExit(1)

    if json_output:
        click.echo(json.dumps([r.model_dump() for r in records], indent=2))
        return
    table = Table(title=f"Messages ({len(records)} since id {since})")
    table.add_column("ID", style="bold", justify="right")
    table.add_column("Author")
    table.add_column("Content")
    table.add_column("Metadata", style="dim")
    for r in records:
        meta = ", ".join(f"{k}={v}" for k, v in r.metadata.items())
        table.add_row(str(r.id), r.author, r.content, meta)
    console.print(table)
