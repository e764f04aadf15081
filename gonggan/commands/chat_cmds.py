from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from rich import print
from rich.markup import escape

from gonggan.commands.common import fail, load_uploads, resolve_space
from gonggan.config import load_config
from gonggan.conversation import ChatCoordinator
from gonggan.errors import ValidationError
from gonggan.generation import ReferenceImage
from gonggan.images import gallery_references, generate_image_batch
from gonggan.library import SpaceLibrary
from gonggan.models import CONTENT_IMAGE, IMAGE_COMPLETED, MESSAGE_AI
from gonggan.store import MessagePath, SpaceStore
from gonggan.store.paths import Spaces


class StreamPrinter:
    """Store listener that echoes the growing text of AI replies in one thread."""

    def __init__(self, space_id: str, thread_id: str | None = None) -> None:
        self.space_id = space_id
        self.thread_id = thread_id
        self._printed: dict[str, str] = {}
        self.finished: set[str] = set()

    def __call__(self, previous: Spaces, current: Spaces) -> None:
        space = next((s for s in current if s.id == self.space_id), None)
        if space is None:
            return
        for thread in space.threads:
            if self.thread_id is not None and thread.id != self.thread_id:
                continue
            for message in thread.messages:
                if message.type != MESSAGE_AI or message.content_type == CONTENT_IMAGE:
                    continue
                if message.is_streaming and message.id not in self._printed:
                    self._printed[message.id] = ""
                if message.id not in self._printed:
                    continue
                self._echo(message.id, message.content)
                if not message.is_streaming:
                    print()
                    del self._printed[message.id]
                    self.finished.add(message.id)

    def _echo(self, message_id: str, content: str) -> None:
        shown = self._printed[message_id]
        if content.startswith(shown):
            if len(content) > len(shown):
                print(escape(content[len(shown) :]), end="")
        else:
            # Replaced wholesale, e.g. by an error text.
            print()
            print(escape(content), end="")
        self._printed[message_id] = content


def _print_final(store: SpaceStore, path: MessagePath, printer: StreamPrinter) -> None:
    message = store.get_message(path)
    if message.content_type == CONTENT_IMAGE:
        print(f"[green]✓ Image reply saved[/green] ({message.id})")
    elif message.id not in printer.finished:
        print(escape(message.content))


def chat_cmd(
    library: SpaceLibrary,
    *,
    client_factory: Callable[[], Any],
    space_ref: str,
    text: str,
    thread_id: str | None,
    mode: str,
    attachments: list[str],
    model: str | None,
    quote: str | None,
) -> None:
    """Send a message and stream the reply."""

    if mode not in {"text", "image"}:
        fail(f"Unknown mode: {mode}")
    uploads = load_uploads(attachments)
    client = client_factory()
    with library.session() as store:
        space = resolve_space(store, space_ref)
        coordinator = ChatCoordinator(
            store, client, client, history_limit=load_config().history_limit
        )
        printer = StreamPrinter(space.id, thread_id)
        unsubscribe = store.subscribe(printer)
        try:
            if thread_id:
                try:
                    store.get_thread(space.id, thread_id)
                except KeyError:
                    fail(f"Thread not found: {thread_id}")
                send = coordinator.send_message(
                    space.id,
                    thread_id,
                    text,
                    mode=mode,
                    attachments=uploads,
                    model=model,
                    quoted_context=quote,
                )
            else:
                send = coordinator.create_thread_and_send(
                    space.id,
                    text,
                    mode=mode,
                    attachments=uploads,
                    model=model,
                    quoted_context=quote,
                )
            path = asyncio.run(send)
        finally:
            unsubscribe()
        _print_final(store, path, printer)
    print(f"[dim]thread {path.thread_id}[/dim]")


def regenerate_cmd(
    library: SpaceLibrary,
    *,
    client_factory: Callable[[], Any],
    space_ref: str,
    thread_id: str,
    message_id: str | None,
    model: str | None,
) -> None:
    """Replace an AI reply with a freshly generated one."""

    client = client_factory()
    with library.session() as store:
        space = resolve_space(store, space_ref)
        try:
            thread = store.get_thread(space.id, thread_id)
        except KeyError:
            fail(f"Thread not found: {thread_id}")
        if message_id is None:
            last_ai = next((m for m in reversed(thread.messages) if m.type == MESSAGE_AI), None)
            if last_ai is None:
                fail("Thread has no AI reply to regenerate")
            message_id = last_ai.id
        coordinator = ChatCoordinator(
            store, client, client, history_limit=load_config().history_limit
        )
        unsubscribe = store.subscribe(StreamPrinter(space.id, thread_id))
        try:
            asyncio.run(coordinator.regenerate(space.id, thread_id, message_id, model=model))
        except (KeyError, ValidationError) as exc:
            fail(str(exc).strip("'\""))
        finally:
            unsubscribe()


def image_cmd(
    library: SpaceLibrary,
    *,
    client_factory: Callable[[], Any],
    space_ref: str,
    prompt: str,
    count: int,
    aspect_ratio: str,
    quality: str,
    model: str | None,
    references: list[str],
    gallery_ids: list[str],
) -> None:
    """Generate a batch of images into the space gallery."""

    reference_images = [
        ReferenceImage(data=upload.data, mime_type=upload.mime_type or "image/png")
        for upload in load_uploads(references)
    ]
    client = client_factory()
    with library.session() as store:
        space = resolve_space(store, space_ref)
        try:
            reference_images += gallery_references(space, gallery_ids)
            images = asyncio.run(
                generate_image_batch(
                    store,
                    client,
                    space.id,
                    prompt,
                    aspect_ratio=aspect_ratio,
                    quality=quality,
                    count=count,
                    model=model,
                    reference_images=reference_images,
                )
            )
        except ValidationError as exc:
            fail(str(exc))
    completed = sum(1 for image in images if image.status == IMAGE_COMPLETED)
    for image in images:
        color = "green" if image.status == IMAGE_COMPLETED else "red"
        print(f"- {image.id} [{color}]{image.status}[/{color}]")
    print(f"{completed}/{len(images)} images generated")
