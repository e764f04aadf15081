from __future__ import annotations

import base64
import binascii
import datetime as dt
import mimetypes
import re
from pathlib import Path

DATA_URL_RE = re.compile(r"^data:(?P<mime>[^;,]*)(?P<params>(?:;[^;,]*)*),(?P<data>.*)$", re.DOTALL)

# Letters, digits and Hangul survive in exported names; everything else is replaced.
_TITLE_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9가-힣]")
_NOTE_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9가-힣\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def encode_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_url(value: str | None) -> tuple[bytes, str] | None:
    """Return ``(payload, mime_type)`` for a base64 ``data:`` URL, else None."""
    if not value:
        return None
    match = DATA_URL_RE.match(value)
    if not match or ";base64" not in match.group("params"):
        return None
    try:
        payload = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError):
        return None
    return payload, match.group("mime") or "application/octet-stream"


def b64encode_text(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def sanitize_title(title: str) -> str:
    return _TITLE_UNSAFE_RE.sub("_", title)


def note_slug(content: str, *, limit: int = 20) -> str:
    first_line = content.split("\n")[0].strip()
    cleaned = _NOTE_UNSAFE_RE.sub("", first_line[:limit]).strip()
    return _WHITESPACE_RE.sub("_", cleaned) or "memo"


def format_stamp(moment: dt.datetime) -> str:
    """YYYYMMDDHHmm in local time, used in export file names."""
    return moment.astimezone().strftime("%Y%m%d%H%M")


def size_label(num_bytes: int) -> str:
    size_mb = num_bytes / (1024 * 1024)
    if size_mb < 1:
        return f"{num_bytes / 1024:.0f} KB"
    return f"{size_mb:.1f} MB"


def detect_file_kind(name: str, mime_type: str | None) -> str:
    mime = (mime_type or "").lower()
    if "pdf" in mime:
        return "pdf"
    if "image" in mime:
        return "image"
    if name.lower().endswith((".doc", ".docx")):
        return "doc"
    return "txt"


def guess_mime_type(path: Path) -> str:
    return mimetypes.guess_type(path.name)[0] or "application/octet-stream"
