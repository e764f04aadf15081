from __future__ import annotations

from pathlib import Path
from typing import NoReturn

import typer
from rich import print
from rich.markup import escape

from gonggan.config import load_config
from gonggan.library import SpaceLibrary
from gonggan.models import Space
from gonggan.store import SpaceStore, Upload
from gonggan.utils import guess_mime_type


def fail(message: str) -> NoReturn:
    print(f"[red]{escape(message)}[/red]")
    raise typer.Exit(code=1)


def library_from_path(library_dir: str | None) -> SpaceLibrary:
    if library_dir:
        return SpaceLibrary(library_dir)
    return SpaceLibrary.from_config(load_config())


def resolve_space(store: SpaceStore, ref: str) -> Space:
    """Find a space by id, unique id prefix, or exact title."""
    space = store.find_space(ref)
    if space is not None:
        return space
    matches = [s for s in store.spaces if s.id.startswith(ref)]
    if not matches:
        matches = [s for s in store.spaces if s.title == ref]
    if len(matches) == 1:
        return matches[0]
    if matches:
        fail(f"Space reference is ambiguous: {ref}")
    fail(f"Space not found: {ref}")


def load_uploads(paths: list[str]) -> list[Upload]:
    uploads: list[Upload] = []
    for raw_path in paths:
        path = Path(raw_path).expanduser()
        if not path.is_file():
            fail(f"File not found: {path}")
        uploads.append(
            Upload(name=path.name, data=path.read_bytes(), mime_type=guess_mime_type(path))
        )
    return uploads


def short_id(value: str) -> str:
    return value[-8:]
