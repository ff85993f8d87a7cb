"""Devzat plugin CLI.

Small example plugins built on the SDK. The host address and token come from
--host/--token or the DEVZAT_HOST/DEVZAT_TOKEN environment variables.

Usage:
    devzat-plugin send "#main" "Hello World from Python!"
    devzat-plugin send "#main" "psst" --to alice
    devzat-plugin greet                       # Answer /greet <name>
    devzat-plugin listen --pattern "hello"    # Print matching events
    devzat-plugin listen --middleware --upper # Rewrite messages to upper case
"""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass

import click

from .client import Client
from .errors import ApplicationError, PluginError
from .protocol.messages import CommandDef, CommandInvocation, Event, ListenerSpec, Message

DEFAULT_HOST = "https://devzat.hackclub.com:5556"

GREET_COMMAND = CommandDef(name="greet", description="Greet someone.", args_usage="<name>")


def greet(invocation: CommandInvocation) -> str:
    """Reply for the greet command."""
    return f"Hello {invocation.args}!"


@dataclass
class Settings:
    """Connection settings shared by all subcommands."""

    host: str
    token: str
    timeout: float | None


@click.group()
@click.option("--host", envvar="DEVZAT_HOST", default=DEFAULT_HOST, show_default=True)
@click.option("--token", envvar="DEVZAT_TOKEN", required=True, help="Plugin token")
@click.option("--timeout", type=float, default=None, help="Dial timeout in seconds")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, host: str, token: str, timeout: float | None, verbose: bool) -> None:
    """Devzat plugin examples."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    ctx.obj = Settings(host=host, token=token, timeout=timeout)


async def _connect(settings: Settings) -> Client:
    return await Client.connect(settings.host, settings.token, timeout=settings.timeout)


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except PluginError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


def _report(error: ApplicationError) -> None:
    click.echo(f"Handler error: {error}", err=True)


@main.command()
@click.argument("room")
@click.argument("text")
@click.option("--from", "sender", default=None, help="Send as this user name")
@click.option("--to", "ephemeral_to", default=None, help="Only show the message to this user")
@click.pass_obj
def send(
    settings: Settings, room: str, text: str, sender: str | None, ephemeral_to: str | None
) -> None:
    """Send one message to ROOM."""

    async def run() -> None:
        async with await _connect(settings) as client:
            await client.send_message(
                Message(room=room, sender=sender, text=text, ephemeral_to=ephemeral_to)
            )
        click.echo("sent")

    _run(run())


@main.command("greet")
@click.pass_obj
def greet_command(settings: Settings) -> None:
    """Answer the greet command until the host ends the subscription."""

    async def run() -> None:
        async with await _connect(settings) as client:
            session = await client.register_command(GREET_COMMAND, greet, on_error=_report)
            await session.join()

    _run(run())


@main.command()
@click.option("--middleware", is_flag=True, help="Register as middleware")
@click.option("--once", is_flag=True, help="Stop after the first event")
@click.option("--pattern", default=None, help="Only receive messages matching this regex")
@click.option("--upper", is_flag=True, help="Rewrite messages to upper case (needs --middleware)")
@click.pass_obj
def listen(
    settings: Settings, middleware: bool, once: bool, pattern: str | None, upper: bool
) -> None:
    """Print chat events as they arrive."""
    if upper and not middleware:
        raise click.UsageError("--upper requires --middleware")

    def handle(event: Event) -> str | None:
        click.echo(f"[{event.room}] {event.sender}: {event.text}")
        return event.text.upper() if upper else None

    async def run() -> None:
        spec = ListenerSpec(middleware=middleware, once=once, pattern=pattern)
        async with await _connect(settings) as client:
            session = await client.register_listener(spec, handle, on_error=_report)
            await session.join()

    _run(run())


if __name__ == "__main__":
    main()
