"""CLI: zapdesk config show|set"""

import json

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from zapdesk.config import CONFIG_FILE, Settings

console = Console()


def _load_config() -> dict:
    from zapdesk.cli.main import _load_config
    return _load_config()


def _save_config(cfg: dict) -> None:
    from zapdesk.cli.main import _save_config
    _save_config(cfg)


def _settings() -> Settings:
    from zapdesk.cli.main import _settings
    return _settings()


@click.group()
def config():
    """Settings management."""


@config.command("show")
@click.option("--json-output", "--json", is_flag=True)
def config_show(json_output):
    """Show effective settings (file + ZAPDESK_* environment)."""
    settings = _settings()
    data = settings.model_dump()
    if data.get("api_token"):
        data["api_token"] = "***"
    if json_output:
        click.echo(json.dumps(data, indent=2))
        return
    table = Table(title=str(CONFIG_FILE))
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(key, ", ".join(value) if isinstance(value, list) else str(value))
    console.print(table)


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key, value):
    """Set KEY to VALUE in the config file."""
    if key not in Settings.model_fields:
        console.print(f"[red]Unknown setting {key!r}.[/red]")
        raise SystemExit(1)
    cfg = _load_config()
    cfg[key] = [q.strip() for q in value.split(",") if q.strip()] if key == "status_queues" else value
    try:
        Settings.model_validate(cfg)
    except ValidationError as e:
        console.print(f"[red]Invalid value for {key}: {e.errors()[0]['msg']}[/red]")
        raise SystemExit(1)
    _save_config(cfg)
    console.print(f"[green]{key} saved.[/green]")
