from __future__ import annotations

import asyncio
import io
import json
import logging
import zipfile
from collections.abc import Iterator
from pathlib import Path
from typing import IO, Any

from ..models import IMAGE_COMPLETED, Message, Note, Space
from ..utils import note_slug
from .format import (
    ENTRY_DATE_TIME,
    FILES_DIR,
    FILES_MANIFEST_ENTRY,
    FORMAT_VERSION,
    GALLERY_ENTRY,
    IMAGES_DIR,
    METADATA_ENTRY,
    NOTES_DIR,
    NOTES_ENTRY,
    THREADS_ENTRY,
    archive_filename,
    image_entry_name,
    to_iso,
)

logger = logging.getLogger(__name__)


def _dump(data: Any) -> bytes:
    return json.dumps(data, ensure_ascii=False, indent=2).encode("utf-8")


def build_metadata(space: Space) -> dict[str, Any]:
    return {
        "id": space.id,
        "title": space.title,
        "description": space.description,
        "lastActive": to_iso(space.last_active),
        "isPrivate": space.is_private,
        "instructions": space.instructions,
        "webSearchEnabled": space.web_search_enabled,
        "version": FORMAT_VERSION,
    }


def message_record(message: Message) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": message.id,
        "type": message.type,
        "contentType": message.content_type,
        "content": message.content,
        "timestamp": to_iso(message.timestamp),
        "isStreaming": message.is_streaming,
    }
    if message.quoted_context is not None:
        record["quotedContext"] = message.quoted_context
    return record


def build_threads(space: Space) -> list[dict[str, Any]]:
    return [
        {
            "id": thread.id,
            "title": thread.title,
            "lastMessageAt": to_iso(thread.last_message_at),
            "messages": [message_record(message) for message in thread.messages],
        }
        for thread in space.threads
    ]


def build_files(space: Space) -> tuple[list[dict[str, Any]], list[tuple[str, bytes]]]:
    """Return the files manifest and the ``(entry name, payload)`` pairs to store."""
    manifest: list[dict[str, Any]] = []
    payloads: list[tuple[str, bytes]] = []
    used_names: set[str] = set()
    for file in space.files:
        record: dict[str, Any] = {
            "id": file.id,
            "name": file.name,
            "type": file.kind,
            "size": file.size,
            "addedAt": to_iso(file.added_at),
            "mimeType": file.mime_type,
            "url": file.url,
            "hasContent": file.has_content,
        }
        if file.has_content and file.data is not None:
            entry_name = file.name
            if entry_name in used_names:
                # Same display name twice: keep the later payload reachable.
                entry_name = f"{file.id}_{file.name}"
                record["entryName"] = entry_name
            used_names.add(entry_name)
            payloads.append((FILES_DIR + entry_name, file.data))
        manifest.append(record)
    return manifest, payloads


def build_gallery(space: Space) -> tuple[list[dict[str, Any]], list[tuple[str, bytes]]]:
    gallery: list[dict[str, Any]] = []
    payloads: list[tuple[str, bytes]] = []
    for image in space.generated_images:
        file_name = None
        if image.status == IMAGE_COMPLETED and image.data:
            file_name = image_entry_name(image.id)
            payloads.append((IMAGES_DIR + file_name, image.data))
        gallery.append(
            {
                "id": image.id,
                "prompt": image.prompt,
                "aspectRatio": image.aspect_ratio,
                "quality": image.quality,
                "createdAt": to_iso(image.created_at),
                "status": image.status,
                "fileName": file_name,
            }
        )
    return gallery, payloads


def build_notes(space: Space) -> list[dict[str, Any]]:
    return [
        {"id": note.id, "content": note.content, "createdAt": to_iso(note.created_at)}
        for note in space.notes
    ]


def note_filename(note: Note) -> str:
    return f"{note_slug(note.content)}_{note.id[-4:]}.txt"


def _note_entries(space: Space) -> Iterator[tuple[str, bytes]]:
    seen: set[str] = set()
    for note in space.notes:
        name = note_filename(note)
        if name in seen:
            stem = name[: -len(".txt")]
            counter = 2
            while f"{stem}_{counter}.txt" in seen:
                counter += 1
            name = f"{stem}_{counter}.txt"
        seen.add(name)
        yield NOTES_DIR + name, note.content.encode("utf-8")


def iter_entries(space: Space) -> Iterator[tuple[str, bytes]]:
    """Yield every container entry in the fixed archive order."""
    yield METADATA_ENTRY, _dump(build_metadata(space))
    yield THREADS_ENTRY, _dump(build_threads(space))
    manifest, file_payloads = build_files(space)
    yield FILES_MANIFEST_ENTRY, _dump(manifest)
    yield from file_payloads
    gallery, image_payloads = build_gallery(space)
    yield GALLERY_ENTRY, _dump(gallery)
    yield from image_payloads
    yield NOTES_ENTRY, _dump(build_notes(space))
    yield from _note_entries(space)


def _zip_info(name: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name, date_time=ENTRY_DATE_TIME)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = 0o644 << 16
    return info


def write_archive(space: Space, target: str | Path | IO[bytes]) -> None:
    if isinstance(target, (str, Path)):
        target = Path(target).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(target, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, payload in iter_entries(space):
            zf.writestr(_zip_info(name), payload)


def archive_bytes(space: Space) -> bytes:
    buffer = io.BytesIO()
    write_archive(space, buffer)
    return buffer.getvalue()


def export_space(space: Space, directory: str | Path = ".") -> Path:
    """Write ``space`` as ``<title>_<YYYYMMDDHHmm>.gonggan`` inside ``directory``."""
    output_path = Path(directory).expanduser() / archive_filename(space.title)
    write_archive(space, output_path)
    logger.info(
        "space exported",
        extra={"space_id": space.id, "path": str(output_path)},
    )
    return output_path


async def export_space_async(space: Space, directory: str | Path = ".") -> Path:
    return await asyncio.to_thread(export_space, space, directory)
