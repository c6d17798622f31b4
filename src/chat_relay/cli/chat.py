"""CLI: chat-relay chat, chat-relay send"""

import asyncio
import json

import click
from rich.console import Console

from chat_relay.client import DEFAULT_URL, AsyncChatClient
from chat_relay.errors import ConnectionError
from chat_relay.models.record import ANONYMOUS, MessageRecord

console = Console()


def _run(coro):
    from chat_relay.cli.main import _run
    return _run(coro)


def _print_record(record: MessageRecord) -> None:
    console.print(f"[dim]#{record.id}[/dim] [green]{record.author}:[/green] {record.content}")


@click.command("chat")
@click.option("--url", default=DEFAULT_URL, show_default=True)
@click.option("-u", "--username", default=ANONYMOUS, show_default=True)
@click.option("--offset", default=0, type=int, help="Highest message id already seen")
def chat_cmd(url: str, username: str, offset: int):
    """Interactive chat."""

    async def _chat():
        client = AsyncChatClient(url=url, username=username, server_offset=offset)
        client.add_message_handler(_print_record)
        await client.connect()
        console.print(f"[cyan]Connected to {url} as {username}. Type /quit to exit.[/cyan]\n")
        loop = asyncio.get_running_loop()
        try:
            while True:
                msg = await loop.run_in_executor(None, input)
                if msg.strip().lower() in ("/quit", "/exit"):
                    break
                await client.send(msg)
        except (EOFError, KeyboardInterrupt):
            pass
        finally:
            await client.disconnect()

    try:
        _run(_chat())
    except ConnectionError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)


@click.command("send")
@click.argument("message")
@click.option("--url", default=DEFAULT_URL, show_default=True)
@click.option("-u", "--username", default=ANONYMOUS, show_default=True)
@click.option("--json-output", "--json", is_flag=True)
def send_cmd(message: str, url: str, username: str, json_output: bool):
    """Send a one-shot message and report the id it was stored under."""

    async def _send():
        # Offset far ahead: a one-shot sender does not want the backlog.
        client = AsyncChatClient(url=url, username=username, server_offset=2**62)
        await client.connect()
        try:
            return await client.send(message, ack=True)
        finally:
            await client.disconnect()

    try:
        reply = _run(_send())
    except (ConnectionError, TimeoutError) as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)

    if json_output:
        click.echo(json.dumps(reply))
    elif reply and reply.get("ok"):
        console.print(f"[green]Sent as message {reply['id']}[/green]")
    else:
        console.print(f"[red]Message was not stored ({(reply or {}).get('error', 'no reply')})[/red]")
        raise SystemExit(1)
