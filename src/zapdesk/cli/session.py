"""CLI: zapdesk session qr|force-auth, zapdesk send"""

import json

import click
from rich.console import Console

from zapdesk.errors import ConnectionError, DecodeError, PublishError
from zapdesk.transport.envelope import build_outbound_message

console = Console()


def _get_publisher():
    from zapdesk.cli.main import _get_publisher
    return _get_publisher()


def _run(coro):
    from zapdesk.cli.main import _run
    return _run(coro)


async def _publish(action):
    broker, gateway = _get_publisher()
    try:
        await broker.connect()
        return await action(gateway)
    except (ConnectionError, PublishError) as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)
    finally:
        await broker.close()


@click.group()
def session():
    """WhatsApp session control."""


@session.command("qr")
def session_qr():
    """Ask the messaging client for a new QR code."""

    async def _qr():
        with console.status("Publishing generate_qr..."):
            ack = await _publish(lambda gateway: gateway.request_generate_qr())
        console.print(f"[green]generate_qr published ({ack.message_id}).[/green]")
        console.print("[dim]The QR code arrives on the status queue; watch it with `zapdesk run`.[/dim]")

    _run(_qr())


@session.command("force-auth")
def session_force_auth():
    """Discard the current session and start a new pairing."""

    async def _force():
        with console.status("Publishing force_new_auth..."):
            ack = await _publish(lambda gateway: gateway.request_force_new_auth())
        console.print(f"[green]force_new_auth published ({ack.message_id}).[/green]")

    _run(_force())


@click.command("send")
@click.argument("phone")
@click.argument("text")
@click.option("--json-output", "--json", is_flag=True)
def send_cmd(phone, text, json_output):
    """Publish a text message to PHONE.

    The CLI holds no live session, so the session state is not checked.
    """
    try:
        envelope = build_outbound_message(phone, text)
    except DecodeError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)

    async def _send():
        ack = await _publish(lambda gateway: gateway.publish_with_retry(envelope))
        if json_output:
            click.echo(json.dumps(ack.model_dump(mode="json"), indent=2))
            return
        console.print(f"[green]Message {ack.message_id} published to {ack.queue}.[/green]")

    _run(_send())
