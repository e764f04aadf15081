from __future__ import annotations

import dataclasses
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..errors import ValidationError
from ..models import GeneratedImage, Note, Space, SpaceFile, Thread, new_id, utcnow
from ..utils import detect_file_kind, size_label
from . import paths as store_paths

if TYPE_CHECKING:
    from ._store import SpaceStore

DEFAULT_SPACE_TITLE = "새로운 공간"
IMAGE_THREAD_TITLE = "이미지 생성"
THREAD_TITLE_LIMIT = 20


@dataclass(frozen=True, slots=True)
class Upload:
    name: str
    data: bytes
    mime_type: str | None = None


def create_space(store: SpaceStore, title: str = DEFAULT_SPACE_TITLE, **fields: Any) -> Space:
    space = Space(id=new_id(), title=title, last_active=utcnow(), **fields)
    return store.add_space(space)


def set_title(store: SpaceStore, space_id: str, title: str) -> bool:
    return store.update_space(space_id, lambda s: dataclasses.replace(s, title=title))


def set_description(store: SpaceStore, space_id: str, description: str) -> bool:
    return store.update_space(space_id, lambda s: dataclasses.replace(s, description=description))


def set_instructions(
    store: SpaceStore, space_id: str, instructions: str, web_search_enabled: bool | None = None
) -> bool:
    def _apply(space: Space) -> Space:
        web_search = space.web_search_enabled if web_search_enabled is None else web_search_enabled
        return dataclasses.replace(
            space, instructions=instructions, web_search_enabled=web_search
        )

    return store.update_space(space_id, _apply)


def file_from_upload(upload: Upload) -> SpaceFile:
    mime_type = upload.mime_type or "application/octet-stream"
    return SpaceFile(
        id=new_id(),
        name=upload.name,
        kind=detect_file_kind(upload.name, upload.mime_type),
        added_at=utcnow(),
        size=size_label(len(upload.data)),
        mime_type=mime_type,
        data=upload.data,
    )


def add_files(store: SpaceStore, space_id: str, uploads: Sequence[Upload]) -> list[SpaceFile]:
    store.get_space(space_id)
    files = [file_from_upload(upload) for upload in uploads]
    store.apply(
        lambda spaces: store_paths.add_children(spaces, space_id, "files", tuple(files))
    )
    return files


def add_link(store: SpaceStore, space_id: str, url: str) -> SpaceFile:
    url = url.strip()
    if not url:
        raise ValidationError("link url is empty")
    store.get_space(space_id)
    link = SpaceFile(id=new_id(), name=url, kind="link", added_at=utcnow(), url=url)
    store.apply(lambda spaces: store_paths.add_children(spaces, space_id, "files", (link,)))
    return link


def remove_file(store: SpaceStore, space_id: str, file_id: str) -> bool:
    return store.apply(lambda spaces: store_paths.remove_child(spaces, space_id, "files", file_id))


def thread_title(first_message: str, *, mode: str = "text") -> str:
    if mode == "image":
        return IMAGE_THREAD_TITLE
    if len(first_message) > THREAD_TITLE_LIMIT:
        return first_message[:THREAD_TITLE_LIMIT] + "..."
    return first_message


def create_thread(
    store: SpaceStore, space_id: str, first_message: str, *, mode: str = "text"
) -> Thread:
    store.get_space(space_id)
    thread = Thread(
        id=new_id(),
        title=thread_title(first_message, mode=mode),
        last_message_at=utcnow(),
    )
    store.add_thread(space_id, thread)
    return thread


def add_note(store: SpaceStore, space_id: str, content: str) -> Note:
    store.get_space(space_id)
    note = Note(id=new_id(), content=content, created_at=utcnow())
    store.apply(lambda spaces: store_paths.add_children(spaces, space_id, "notes", (note,)))
    return note


def edit_note(store: SpaceStore, space_id: str, note_id: str, content: str) -> bool:
    return store.update_note(space_id, note_id, lambda n: dataclasses.replace(n, content=content))


def delete_note(store: SpaceStore, space_id: str, note_id: str) -> bool:
    return store.apply(lambda spaces: store_paths.remove_child(spaces, space_id, "notes", note_id))


def note_to_file(store: SpaceStore, space_id: str, note_id: str) -> SpaceFile:
    space = store.get_space(space_id)
    note = next((n for n in space.notes if n.id == note_id), None)
    if note is None:
        raise KeyError(f"unknown note: {note_id}")
    payload = note.content.encode("utf-8")
    file = SpaceFile(
        id=new_id(),
        name=f"memo_{note.id[-4:]}.txt",
        kind="txt",
        added_at=utcnow(),
        size=f"{len(payload) / 1024:.1f} KB",
        mime_type="text/plain",
        data=payload,
    )
    store.apply(lambda spaces: store_paths.add_children(spaces, space_id, "files", (file,)))
    return file


def delete_image(store: SpaceStore, space_id: str, image_id: str) -> bool:
    return store.apply(
        lambda spaces: store_paths.remove_child(spaces, space_id, "generated_images", image_id)
    )


def placeholder_image(prompt: str, aspect_ratio: str, quality: str) -> GeneratedImage:
    return GeneratedImage(
        id=new_id(),
        prompt=prompt,
        aspect_ratio=aspect_ratio,
        quality=quality,
        created_at=utcnow(),
    )
