"""CLI: zapdesk run, zapdesk decode"""

import asyncio
from pathlib import Path

import click
from rich.console import Console

from zapdesk.errors import ConnectionError, DecodeError
from zapdesk.transport.envelope import decode

console = Console()

STALL_CHECK_INTERVAL_S = 5.0


def _get_client():
    from zapdesk.cli.main import _get_client
    return _get_client()


def _run(coro):
    from zapdesk.cli.main import _run
    return _run(coro)


@click.command("run")
@click.option("-o", "--operator", "operators", multiple=True, help="Register an operator id (repeatable)")
def run_cmd(operators):
    """Consume the broker queues and print session and queue changes."""

    async def _serve():
        client = _get_client()
        for operator_id in operators:
            client.register_operator(operator_id)

        def on_session(snapshot):
            console.print(f"[cyan]session:[/cyan] {snapshot.state}"
                          + (f" ({snapshot.connected_number})" if snapshot.connected_number else ""))
            if snapshot.qr_code:
                console.print(f"[yellow]QR:[/yellow] {snapshot.qr_code}")

        def on_transition(kind, request, _chat):
            m = client.metrics()
            console.print(
                f"[green]{kind}[/green] {request.id} [dim]queued={m.queue_count} "
                f"attending={m.attending_count} avg={m.average_response_time:.1f}s[/dim]"
            )

        client.session.add_listener(on_session)
        client.router.add_transition_handler(on_transition)
        try:
            with console.status("Connecting to RabbitMQ..."):
                await client.connect()
        except ConnectionError as e:
            console.print(f"[red]{e}[/red]")
            raise SystemExit(1)
        console.print("[cyan]Consuming (Ctrl+C to exit)[/cyan]")
        try:
            while True:
                await asyncio.sleep(STALL_CHECK_INTERVAL_S)
                for command in client.stalled_commands():
                    console.print(f"[yellow]{command.command} {command.request_id}: no session update[/yellow]")
        finally:
            await client.disconnect()

    try:
        _run(_serve())
    except KeyboardInterrupt:
        pass


@click.command("decode")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def decode_cmd(file: Path):
    """Decode a JSON payload file and print the normalized envelope."""
    try:
        envelope = decode(file.read_bytes())
    except DecodeError as e:
        console.print(f"[red]{e.code}:[/red] {e}")
        raise SystemExit(1)
    console.print(f"[bold]{type(envelope).__name__}[/bold]")
    console.print_json(envelope.model_dump_json(by_alias=True, exclude_none=True))
