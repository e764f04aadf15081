from __future__ import annotations

import asyncio
import io
import json
import logging
import re
import warnings
import zipfile
import zlib
from pathlib import Path
from typing import IO, Any

from ..errors import ArchiveFormatError, PayloadMissingWarning, ValidationError
from ..models import (
    CONTENT_TEXT,
    GeneratedImage,
    Message,
    Note,
    Space,
    SpaceFile,
    Thread,
    new_id,
    utcnow,
)
from .format import (
    FILES_DIR,
    FILES_MANIFEST_ENTRY,
    GALLERY_ENTRY,
    IMAGES_DIR,
    LEGACY_MESSAGES_ENTRY,
    LEGACY_THREAD_ID,
    LEGACY_THREAD_TITLE,
    METADATA_ENTRY,
    NOTES_ENTRY,
    THREADS_ENTRY,
    parse_iso,
)

logger = logging.getLogger(__name__)

# Older clients embedded quoted context in the message text itself.
LEGACY_QUOTED_CONTEXT_RE = re.compile(
    r'^\[인용된 컨텍스트\]:\n"(?P<context>[\s\S]*?)"\n\n\[사용자 질문\]:\n(?P<question>[\s\S]*)$'
)


# Raised by zipfile when an entry exists but its stored bytes are damaged.
DAMAGED_ENTRY_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError)


def _read_entry(zf: zipfile.ZipFile, name: str) -> bytes | None:
    try:
        return zf.read(name)
    except KeyError:
        return None


def _read_payload(zf: zipfile.ZipFile, kind: str, entity_id: str, entry: str) -> bytes | None:
    try:
        data = _read_entry(zf, entry)
    except DAMAGED_ENTRY_ERRORS as exc:
        logger.warning(
            "archive payload damaged",
            extra={"kind": kind, "entity_id": entity_id, "entry": entry, "error": str(exc)},
        )
        data = None
    if data is None:
        _warn_missing_payload(kind, entity_id, entry)
    return data


def _load_json(zf: zipfile.ZipFile, name: str) -> Any:
    try:
        raw = _read_entry(zf, name)
    except DAMAGED_ENTRY_ERRORS as exc:
        raise ArchiveFormatError(f"Damaged entry {name}: {exc}") from exc
    if raw is None:
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ArchiveFormatError(f"Invalid JSON in {name}: {exc}") from exc


def _require_list(value: Any, name: str) -> list[dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise ArchiveFormatError(f"{name} must be an array of objects")
    return value


def _warn_missing_payload(kind: str, entity_id: str, entry: str) -> None:
    logger.warning(
        "archive payload missing",
        extra={"kind": kind, "entity_id": entity_id, "entry": entry},
    )
    warnings.warn(
        f"{kind} {entity_id} references missing archive entry {entry}",
        PayloadMissingWarning,
        stacklevel=4,
    )


def parse_message(record: dict[str, Any]) -> Message:
    content = str(record.get("content") or "")
    quoted_context = record.get("quotedContext")
    content_type = record.get("contentType") or CONTENT_TEXT
    if quoted_context is None and content_type == CONTENT_TEXT:
        match = LEGACY_QUOTED_CONTEXT_RE.match(content)
        if match:
            quoted_context = match.group("context")
            content = match.group("question")
    return Message(
        id=str(record["id"]),
        type=record["type"],
        content_type=content_type,
        content=content,
        timestamp=parse_iso(record.get("timestamp")),
        # A stream cannot resume from an archive.
        is_streaming=False,
        quoted_context=quoted_context,
    )


def _parse_threads(zf: zipfile.ZipFile) -> tuple[Thread, ...]:
    threads_data = _load_json(zf, THREADS_ENTRY)
    if threads_data is not None:
        threads: list[Thread] = []
        for record in _require_list(threads_data, THREADS_ENTRY):
            messages = tuple(
                parse_message(m) for m in _require_list(record.get("messages"), THREADS_ENTRY)
            )
            threads.append(
                Thread(
                    id=str(record["id"]),
                    title=str(record.get("title") or ""),
                    last_message_at=parse_iso(record.get("lastMessageAt")),
                    messages=messages,
                )
            )
        return tuple(threads)

    legacy_data = _load_json(zf, LEGACY_MESSAGES_ENTRY)
    if legacy_data is None:
        return ()
    messages = tuple(
        parse_message(m) for m in _require_list(legacy_data, LEGACY_MESSAGES_ENTRY)
    )
    last_message_at = messages[-1].timestamp if messages else utcnow()
    logger.info("migrated legacy messages", extra={"count": len(messages)})
    return (
        Thread(
            id=LEGACY_THREAD_ID,
            title=LEGACY_THREAD_TITLE,
            last_message_at=last_message_at,
            messages=messages,
        ),
    )


def _parse_files(zf: zipfile.ZipFile) -> tuple[SpaceFile, ...]:
    files: list[SpaceFile] = []
    for record in _require_list(_load_json(zf, FILES_MANIFEST_ENTRY), FILES_MANIFEST_ENTRY):
        file_id = str(record.get("id") or new_id())
        kind = record.get("type") or "txt"
        name = str(record.get("name") or "")
        data = None
        if record.get("hasContent") and kind != "link":
            entry = FILES_DIR + str(record.get("entryName") or name)
            data = _read_payload(zf, "file", file_id, entry)
        files.append(
            SpaceFile(
                id=file_id,
                name=name,
                kind=kind,
                added_at=parse_iso(record.get("addedAt")),
                size=record.get("size"),
                mime_type=record.get("mimeType"),
                data=data,
                url=record.get("url"),
            )
        )
    return tuple(files)


def _parse_gallery(zf: zipfile.ZipFile) -> tuple[GeneratedImage, ...]:
    images: list[GeneratedImage] = []
    for record in _require_list(_load_json(zf, GALLERY_ENTRY), GALLERY_ENTRY):
        image_id = str(record["id"])
        data = None
        file_name = record.get("fileName")
        if file_name:
            entry = IMAGES_DIR + str(file_name)
            data = _read_payload(zf, "image", image_id, entry)
        images.append(
            GeneratedImage(
                id=image_id,
                prompt=str(record.get("prompt") or ""),
                aspect_ratio=str(record.get("aspectRatio") or ""),
                quality=str(record.get("quality") or ""),
                created_at=parse_iso(record.get("createdAt")),
                status=record.get("status") or "failed",
                data=data,
            )
        )
    return tuple(images)


def _parse_notes(zf: zipfile.ZipFile) -> tuple[Note, ...]:
    return tuple(
        Note(
            id=str(record["id"]),
            content=str(record.get("content") or ""),
            created_at=parse_iso(record.get("createdAt")),
        )
        for record in _require_list(_load_json(zf, NOTES_ENTRY), NOTES_ENTRY)
    )


def _open_zip(source: str | Path | bytes | IO[bytes]) -> zipfile.ZipFile:
    if isinstance(source, bytes):
        source = io.BytesIO(source)
    elif isinstance(source, (str, Path)):
        source = Path(source).expanduser()
    try:
        return zipfile.ZipFile(source, "r")
    except (zipfile.BadZipFile, OSError) as exc:
        raise ArchiveFormatError(f"Not a readable space archive: {exc}") from exc


def read_archive(source: str | Path | bytes | IO[bytes], *, keep_id: bool = False) -> Space:
    """Reconstruct a Space from a ``.gonggan`` container.

    Imported spaces get a fresh identifier unless ``keep_id`` is set; nested
    identifiers, titles and timestamps are kept as written. Nothing is
    returned if any required entry is missing or malformed.
    """

    with _open_zip(source) as zf:
        metadata = _load_json(zf, METADATA_ENTRY)
        if metadata is None:
            raise ArchiveFormatError("Invalid space archive: missing metadata")
        if not isinstance(metadata, dict):
            raise ArchiveFormatError(f"{METADATA_ENTRY} must be an object")
        try:
            threads = _parse_threads(zf)
            files = _parse_files(zf)
            images = _parse_gallery(zf)
            notes = _parse_notes(zf)
        except (KeyError, TypeError, ValidationError) as exc:
            raise ArchiveFormatError(f"Invalid space archive: {exc!r}") from exc

    space_id = str(metadata.get("id") or "") if keep_id else ""
    web_search = metadata.get("webSearchEnabled")
    return Space(
        id=space_id or new_id(),
        title=str(metadata.get("title") or ""),
        description=str(metadata.get("description") or ""),
        last_active=parse_iso(metadata.get("lastActive")),
        is_private=bool(metadata.get("isPrivate", False)),
        instructions=str(metadata.get("instructions") or ""),
        web_search_enabled=True if web_search is None else bool(web_search),
        files=files,
        threads=threads,
        generated_images=images,
        notes=notes,
    )


def import_space(path: str | Path) -> Space:
    space = read_archive(path)
    logger.info("space imported", extra={"space_id": space.id, "path": str(path)})
    return space


async def import_space_async(path: str | Path) -> Space:
    return await asyncio.to_thread(import_space, path)
