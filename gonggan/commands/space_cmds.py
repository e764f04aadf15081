from __future__ import annotations

from rich import print
from rich.markup import escape

from gonggan.commands.common import fail, load_uploads, resolve_space, short_id
from gonggan.errors import ValidationError
from gonggan.library import SpaceLibrary
from gonggan.models import CONTENT_IMAGE, MESSAGE_USER, Space, Thread


def new_space_cmd(
    library: SpaceLibrary,
    *,
    title: str | None,
    description: str,
    instructions: str,
    web_search: bool,
) -> None:
    """Create an empty space."""

    with library.session() as store:
        fields = {
            "description": description,
            "instructions": instructions,
            "web_search_enabled": web_search,
        }
        space = store.create_space(title, **fields) if title else store.create_space(**fields)
    print(f"[green]✓ Created space {escape(space.title)}[/green] ({space.id})")


def list_spaces_cmd(library: SpaceLibrary) -> None:
    """List saved spaces, most recently active first."""

    spaces = library.load_all()
    if not spaces:
        print("No spaces yet")
        return
    for space in spaces:
        print(
            f"- {space.id} {escape(space.title)} "
            f"threads={len(space.threads)} files={len(space.files)} "
            f"images={len(space.generated_images)} notes={len(space.notes)} "
            f"last_active={space.last_active.isoformat(timespec='seconds')}"
        )


def _print_thread(thread: Thread) -> None:
    print(f"[bold]{escape(thread.title)}[/bold] ({thread.id})")
    for message in thread.messages:
        role = "you" if message.type == MESSAGE_USER else "ai"
        if message.content_type == CONTENT_IMAGE:
            body = "[image]"
        else:
            body = message.content
        if message.quoted_context:
            print(f"  > {escape(message.quoted_context)}")
        print(f"  {role} ({short_id(message.id)}): {escape(body)}")


def show_space_cmd(library: SpaceLibrary, *, space_ref: str, thread_id: str | None) -> None:
    """Print one space, or a single thread of it."""

    with library.session() as store:
        space = resolve_space(store, space_ref)
    if thread_id:
        thread = next((t for t in space.threads if t.id == thread_id), None)
        if thread is None:
            fail(f"Thread not found: {thread_id}")
        _print_thread(thread)
        return
    _print_space(space)


def _print_space(space: Space) -> None:
    print(f"[bold]{escape(space.title)}[/bold] ({space.id})")
    if space.description:
        print(f"  {escape(space.description)}")
    if space.instructions:
        print(f"- Instructions: {escape(space.instructions)}")
    print(f"- Web search: {'on' if space.web_search_enabled else 'off'}")
    print(f"- Files: {len(space.files)}")
    for file in space.files:
        detail = file.url if file.kind == "link" else file.size
        kind = escape(f"[{file.kind}]")
        print(f"  - {file.id} {kind} {escape(file.name)} {escape(detail or '')}")
    print(f"- Threads: {len(space.threads)}")
    for thread in space.threads:
        print(f"  - {thread.id} {escape(thread.title)} messages={len(thread.messages)}")
    print(f"- Images: {len(space.generated_images)}")
    for image in space.generated_images:
        print(f"  - {image.id} {image.status} {image.aspect_ratio} {escape(image.prompt)}")
    print(f"- Notes: {len(space.notes)}")


def remove_space_cmd(library: SpaceLibrary, *, space_ref: str) -> None:
    """Delete a space and its saved archive."""

    with library.session() as store:
        space = resolve_space(store, space_ref)
        store.remove_space(space.id)
    print(f"[green]✓ Removed space {escape(space.title)}[/green]")


def note_add_cmd(library: SpaceLibrary, *, space_ref: str, content: str) -> None:
    with library.session() as store:
        space = resolve_space(store, space_ref)
        note = store.add_note(space.id, content)
    print(f"[green]✓ Added note {note.id}[/green]")


def note_list_cmd(library: SpaceLibrary, *, space_ref: str) -> None:
    with library.session() as store:
        space = resolve_space(store, space_ref)
    if not space.notes:
        print("No notes")
        return
    for note in space.notes:
        first_line = note.content.split("\n")[0]
        print(f"- {note.id} {escape(first_line)}")


def note_rm_cmd(library: SpaceLibrary, *, space_ref: str, note_id: str) -> None:
    with library.session() as store:
        space = resolve_space(store, space_ref)
        removed = store.delete_note(space.id, note_id)
    if not removed:
        fail(f"Note not found: {note_id}")
    print(f"[green]✓ Removed note {note_id}[/green]")


def note_to_file_cmd(library: SpaceLibrary, *, space_ref: str, note_id: str) -> None:
    """Attach a note to the space as a text file."""

    with library.session() as store:
        space = resolve_space(store, space_ref)
        try:
            file = store.note_to_file(space.id, note_id)
        except KeyError:
            fail(f"Note not found: {note_id}")
    print(f"[green]✓ Added file {escape(file.name)}[/green] ({file.id})")


def file_add_cmd(library: SpaceLibrary, *, space_ref: str, paths: list[str]) -> None:
    """Attach local files to a space as context."""

    uploads = load_uploads(paths)
    with library.session() as store:
        space = resolve_space(store, space_ref)
        files = store.add_files(space.id, uploads)
    for file in files:
        kind = escape(f"[{file.kind}]")
        print(f"[green]✓ Added {escape(file.name)}[/green] {kind} {file.size} ({file.id})")


def file_link_cmd(library: SpaceLibrary, *, space_ref: str, url: str) -> None:
    with library.session() as store:
        space = resolve_space(store, space_ref)
        try:
            link = store.add_link(space.id, url)
        except ValidationError as exc:
            fail(str(exc))
    print(f"[green]✓ Added link {escape(link.url or '')}[/green] ({link.id})")


def file_rm_cmd(library: SpaceLibrary, *, space_ref: str, file_id: str) -> None:
    with library.session() as store:
        space = resolve_space(store, space_ref)
        removed = store.remove_file(space.id, file_id)
    if not removed:
        fail(f"File not found: {file_id}")
    print(f"[green]✓ Removed file {file_id}[/green]")
