from __future__ import annotations

from ._store import SpaceStore
from .edits import Upload
from .types import MessagePath, ThreadPath

__all__ = [
    "MessagePath",
    "SpaceStore",
    "ThreadPath",
    "Upload",
]
