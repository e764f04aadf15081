from __future__ import annotations

from dataclasses import asdict
from pathlib import Path

from rich import print
from rich.markup import escape

from gonggan.commands.common import fail
from gonggan.config import get_config_path, load_config, set_config_value


def config_set_cmd(*, key: str, value: str, config_path: Path | None) -> None:
    try:
        path = set_config_value(key, value, config_path)
    except ValueError as exc:
        fail(f"Config not updated: {exc}")
    print(f"[green]✓ {escape(key)} saved[/green] to {escape(str(path))}")


def config_show_cmd(*, config_path: Path | None) -> None:
    """Print the effective settings, file values merged with env overrides."""

    cfg = load_config(config_path)
    print(f"[dim]{escape(str(get_config_path(config_path)))}[/dim]")
    for key, value in asdict(cfg).items():
        if key == "api_key" and value:
            value = "***"
        print(f"{key}: {escape(str(value))}")
