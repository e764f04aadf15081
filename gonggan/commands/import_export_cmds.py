from __future__ import annotations

import warnings
from pathlib import Path

from rich import print
from rich.markup import escape

from gonggan.archive import export_space, read_archive, write_archive
from gonggan.commands.common import fail, resolve_space
from gonggan.errors import ArchiveFormatError, PayloadMissingWarning
from gonggan.library import SpaceLibrary
from gonggan.utils import size_label


def export_space_cmd(
    library: SpaceLibrary,
    *,
    space_ref: str,
    output_dir: str,
    output: str | None,
) -> None:
    """Export a space to a portable .gonggan archive."""

    with library.session() as store:
        space = resolve_space(store, space_ref)
    if output:
        output_path = Path(output).expanduser()
        write_archive(space, output_path)
    else:
        output_path = export_space(space, output_dir)
    message_count = sum(len(thread.messages) for thread in space.threads)
    print(f"[green]✓ Exported to {escape(str(output_path))}[/green]")
    print(f"  Size: {size_label(output_path.stat().st_size)}")
    print(f"  Threads: {len(space.threads)}")
    print(f"  Messages: {message_count}")
    print(f"  Files: {len(space.files)}")
    print(f"  Images: {len(space.generated_images)}")
    print(f"  Notes: {len(space.notes)}")


def import_space_cmd(library: SpaceLibrary, *, input_file: str, dry_run: bool) -> None:
    """Import a .gonggan archive as a new space."""

    input_path = Path(input_file).expanduser()
    if not input_path.exists():
        fail(f"Input file not found: {input_path}")

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", PayloadMissingWarning)
        try:
            space = read_archive(input_path)
        except ArchiveFormatError as exc:
            fail(f"Import failed: {exc}")
    missing = [w for w in caught if issubclass(w.category, PayloadMissingWarning)]

    print("[bold]Import Preview[/bold]")
    print(f"- Title: {escape(space.title)}")
    print(f"- Threads: {len(space.threads)}")
    print(f"- Files: {len(space.files)}")
    print(f"- Images: {len(space.generated_images)}")
    print(f"- Notes: {len(space.notes)}")
    for warning in missing:
        print(f"[yellow]! {escape(str(warning.message))}[/yellow]")

    if dry_run:
        print("\n[yellow]Dry run - no data will be imported[/yellow]")
        return

    with library.session() as store:
        store.add_space(space)
    print(f"[green]✓ Imported space {escape(space.title)}[/green] ({space.id})")
