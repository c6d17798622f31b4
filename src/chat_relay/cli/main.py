"""
chat-relay CLI — `chat-relay` command.

Commands:
  chat-relay serve              Run the relay server
  chat-relay history            Print the message log
  chat-relay send <message>     One-shot message to a running server
  chat-relay chat               Interactive chat against a running server
"""

import asyncio

import click
from rich.console import Console

from chat_relay import __version__
from chat_relay.config import Settings, load_settings

console = Console()


def _load_settings(**overrides) -> Settings:
    settings = load_settings()
    updates = {key: value for key, value in overrides.items() if value is not None}
    return settings.model_copy(update=updates) if updates else settings


def _run(coro):
    return asyncio.run(coro)


@click.group()
@click.version_option(__version__)
def main():
    """chat-relay — live chat with a durable, replayable message log."""


# Register subcommands from separate modules
from chat_relay.cli.server import serve, history
from chat_relay.cli.chat import chat_cmd, send_cmd

main.add_command(serve)
main.add_command(history)
main.add_command(chat_cmd)
main.add_command(send_cmd)


if __name__ == "__main__":
    main()
