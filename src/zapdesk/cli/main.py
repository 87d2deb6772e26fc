"""
zapdesk CLI — `zapdesk` command.

Commands:
  zapdesk config show|set         Settings in ~/.zapdesk/config.json
  zapdesk run                     Run the attendance core against the broker
  zapdesk session qr|force-auth   Publish a session control command
  zapdesk send <phone> <text>     Publish an outbound text message
  zapdesk decode <file>           Decode a payload file (diagnostics)
"""

import asyncio
import logging

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install zapdesk[cli]")

from zapdesk.attendance import AttendanceRouter
from zapdesk.client import AsyncZapdesk
from zapdesk.config import Settings, load_config, load_settings, save_config
from zapdesk.gateway import Gateway
from zapdesk.session import SessionStateMachine
from zapdesk.transport.broker import BrokerConnection

console = Console()


def _load_config() -> dict:
    return load_config()


def _save_config(cfg: dict) -> None:
    save_config(cfg)


def _settings() -> Settings:
    return load_settings()


def _get_client() -> AsyncZapdesk:
    return AsyncZapdesk(_settings())


def _get_publisher() -> tuple[BrokerConnection, Gateway]:
    """Broker + gateway that only publish; nothing is consumed."""
    s = _settings()
    broker = BrokerConnection(s.rabbit_url, queues=[s.outgoing_queue], connect_attempts=3)
    gateway = Gateway(
        broker,
        SessionStateMachine(),
        AttendanceRouter(),
        outgoing_queue=s.outgoing_queue,
        publish_attempts=s.publish_attempts,
    )
    return broker, gateway


def _run(coro):
    return asyncio.run(coro)


@click.group()
@click.version_option("0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def main(verbose: bool):
    """zapdesk — WhatsApp attendance core."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


# Register subcommands from separate modules
from zapdesk.cli.config import config
from zapdesk.cli.run import decode_cmd, run_cmd
from zapdesk.cli.session import send_cmd, session

main.add_command(config)
main.add_command(run_cmd)
main.add_command(session)
main.add_command(send_cmd)
main.add_command(decode_cmd)


if __name__ == "__main__":
    main()
