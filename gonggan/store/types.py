from __future__ import annotations

from typing import Literal, NamedTuple

ChildCollection = Literal["files", "generated_images", "notes"]


class ThreadPath(NamedTuple):
    space_id: str
    thread_id: str


class MessagePath(NamedTuple):
    space_id: str
    thread_id: str
    message_id: str

    @property
    def thread(self) -> ThreadPath:
        return ThreadPath(self.space_id, self.thread_id)
