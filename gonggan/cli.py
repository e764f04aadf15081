from __future__ import annotations

import logging
import os
from pathlib import Path

import typer
from rich import print

from . import __version__
from .commands.chat_cmds import chat_cmd, image_cmd, regenerate_cmd
from .commands.config_cmds import config_set_cmd, config_show_cmd
from .commands.common import library_from_path
from .commands.import_export_cmds import export_space_cmd, import_space_cmd
from .commands.space_cmds import (
    file_add_cmd,
    file_link_cmd,
    file_rm_cmd,
    list_spaces_cmd,
    new_space_cmd,
    note_add_cmd,
    note_list_cmd,
    note_rm_cmd,
    note_to_file_cmd,
    remove_space_cmd,
    show_space_cmd,
)
from .config import load_config
from .generation import ModelClient

app = typer.Typer(help="gonggan: AI conversation spaces in portable archives")
note_app = typer.Typer(help="Manage space notes")
file_app = typer.Typer(help="Manage space context files")
config_app = typer.Typer(help="Show or change settings")
app.add_typer(note_app, name="note")
app.add_typer(file_app, name="file")
app.add_typer(config_app, name="config")

LIBRARY_HELP = "Directory holding saved spaces"


def _model_client() -> ModelClient:
    return ModelClient(load_config())


@app.callback()
def _configure_logging(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output"),
) -> None:
    level = os.getenv("GONGGAN_LOG_LEVEL", "DEBUG" if verbose else "WARNING")
    logging.basicConfig(level=level.upper(), format="%(levelname)s %(name)s: %(message)s")


@app.command("new")
def new_space(
    title: str = typer.Option(None, help="Space title"),
    description: str = typer.Option("", help="Short description"),
    instructions: str = typer.Option("", help="Persona instructions sent with every prompt"),
    web_search: bool = typer.Option(True, help="Allow the model to search the web"),
    library_dir: str = typer.Option(None, help=LIBRARY_HELP),
) -> None:
    """Create a new space."""
    new_space_cmd(
        library_from_path(library_dir),
        title=title,
        description=description,
        instructions=instructions,
        web_search=web_search,
    )


@app.command("list")
def list_spaces(library_dir: str = typer.Option(None, help=LIBRARY_HELP)) -> None:
    """List spaces."""
    list_spaces_cmd(library_from_path(library_dir))


@app.command()
def show(
    space: str,
    thread: str = typer.Option(None, help="Print the messages of this thread"),
    library_dir: str = typer.Option(None, help=LIBRARY_HELP),
) -> None:
    """Show a space or one of its threads."""
    show_space_cmd(library_from_path(library_dir), space_ref=space, thread_id=thread)


@app.command("rm")
def remove_space(space: str, library_dir: str = typer.Option(None, help=LIBRARY_HELP)) -> None:
    """Delete a space."""
    remove_space_cmd(library_from_path(library_dir), space_ref=space)


@app.command()
def chat(
    space: str,
    text: str,
    thread: str = typer.Option(None, help="Continue this thread instead of starting one"),
    mode: str = typer.Option("text", help="Reply mode: text or image"),
    attach: list[str] = typer.Option(None, help="Attach a file to this message (repeatable)"),
    model: str = typer.Option(None, help="Override the configured model"),
    quote: str = typer.Option(None, help="Quoted context the question refers to"),
    library_dir: str = typer.Option(None, help=LIBRARY_HELP),
) -> None:
    """Send a message to a space and stream the reply."""
    chat_cmd(
        library_from_path(library_dir),
        client_factory=_model_client,
        space_ref=space,
        text=text,
        thread_id=thread,
        mode=mode,
        attachments=attach or [],
        model=model,
        quote=quote,
    )


@app.command()
def regenerate(
    space: str,
    thread: str,
    message: str = typer.Option(None, help="AI message id (defaults to the latest reply)"),
    model: str = typer.Option(None, help="Override the configured model"),
    library_dir: str = typer.Option(None, help=LIBRARY_HELP),
) -> None:
    """Regenerate an AI reply."""
    regenerate_cmd(
        library_from_path(library_dir),
        client_factory=_model_client,
        space_ref=space,
        thread_id=thread,
        message_id=message,
        model=model,
    )


@app.command()
def image(
    space: str,
    prompt: str,
    count: int = typer.Option(1, help="Number of images to generate (1-4)"),
    aspect_ratio: str = typer.Option("1:1", help="Aspect ratio, e.g. 1:1, 16:9, Auto"),
    quality: str = typer.Option("1K", help="Quality tier: 1K, 2K or 4K"),
    model: str = typer.Option(None, help="Override the configured image model"),
    ref: list[str] = typer.Option(None, help="Reference image path (repeatable, up to 7)"),
    ref_image: list[str] = typer.Option(
        None, help="Completed gallery image id to reuse as a reference (repeatable)"
    ),
    library_dir: str = typer.Option(None, help=LIBRARY_HELP),
) -> None:
    """Generate images into a space gallery."""
    image_cmd(
        library_from_path(library_dir),
        client_factory=_model_client,
        space_ref=space,
        prompt=prompt,
        count=count,
        aspect_ratio=aspect_ratio,
        quality=quality,
        model=model,
        references=ref or [],
        gallery_ids=ref_image or [],
    )


@note_app.command("add")
def note_add(
    space: str, content: str, library_dir: str = typer.Option(None, help=LIBRARY_HELP)
) -> None:
    """Add a note."""
    note_add_cmd(library_from_path(library_dir), space_ref=space, content=content)


@note_app.command("list")
def note_list(space: str, library_dir: str = typer.Option(None, help=LIBRARY_HELP)) -> None:
    """List notes."""
    note_list_cmd(library_from_path(library_dir), space_ref=space)


@note_app.command("rm")
def note_rm(
    space: str, note_id: str, library_dir: str = typer.Option(None, help=LIBRARY_HELP)
) -> None:
    """Delete a note."""
    note_rm_cmd(library_from_path(library_dir), space_ref=space, note_id=note_id)


@note_app.command("to-file")
def note_to_file(
    space: str, note_id: str, library_dir: str = typer.Option(None, help=LIBRARY_HELP)
) -> None:
    """Attach a note to the space as a text file."""
    note_to_file_cmd(library_from_path(library_dir), space_ref=space, note_id=note_id)


@file_app.command("add")
def file_add(
    space: str, paths: list[str], library_dir: str = typer.Option(None, help=LIBRARY_HELP)
) -> None:
    """Attach local files."""
    file_add_cmd(library_from_path(library_dir), space_ref=space, paths=paths)


@file_app.command("link")
def file_link(
    space: str, url: str, library_dir: str = typer.Option(None, help=LIBRARY_HELP)
) -> None:
    """Attach a web link."""
    file_link_cmd(library_from_path(library_dir), space_ref=space, url=url)


@file_app.command("rm")
def file_rm(
    space: str, file_id: str, library_dir: str = typer.Option(None, help=LIBRARY_HELP)
) -> None:
    """Remove a file."""
    file_rm_cmd(library_from_path(library_dir), space_ref=space, file_id=file_id)


@app.command("export")
def export_space(
    space: str,
    output_dir: str = typer.Option(None, help="Directory for the archive (defaults to config)"),
    output: str = typer.Option(None, "--output", "-o", help="Exact output file path"),
    library_dir: str = typer.Option(None, help=LIBRARY_HELP),
) -> None:
    """Export a space to a .gonggan archive."""
    export_space_cmd(
        library_from_path(library_dir),
        space_ref=space,
        output_dir=output_dir or load_config().export_dir,
        output=output,
    )


@app.command("import")
def import_space(
    input_file: str,
    dry_run: bool = typer.Option(False, help="Preview import without writing"),
    library_dir: str = typer.Option(None, help=LIBRARY_HELP),
) -> None:
    """Import a .gonggan archive as a new space."""
    import_space_cmd(library_from_path(library_dir), input_file=input_file, dry_run=dry_run)


@config_app.command("set")
def config_set(
    key: str,
    value: str,
    config: Path = typer.Option(None, help="Config file to write"),
) -> None:
    """Persist one setting, e.g. `gonggan config set provider anthropic`."""
    config_set_cmd(key=key, value=value, config_path=config)


@config_app.command("show")
def config_show(
    config: Path = typer.Option(None, help="Config file to read"),
) -> None:
    """Show the effective settings."""
    config_show_cmd(config_path=config)


def main() -> None:
    app()


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)
