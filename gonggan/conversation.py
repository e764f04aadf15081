"""Merging streamed model replies into the space store.

A reply is folded into one AI message, fragment by fragment, through
path-scoped store updates: the message is created (or reset) empty and
streaming, every fragment replaces its content with the running total, an
optional sources block is appended once the stream ends, and a final update
settles it. Failures always settle the message with a fixed error text.

Only one run may own a message at a time. Starting a new run on a message id
(a regenerate while the previous reply is still streaming) supersedes the
older run: it stops consuming its fragments and none of its later updates are
applied.
"""

from __future__ import annotations

import dataclasses
import itertools
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable, Sequence
from typing import Final

from .config import DEFAULT_HISTORY_LIMIT
from .errors import ValidationError
from .generation import (
    Citation,
    Fragment,
    ImageGenerator,
    ImageRequest,
    TextGenerator,
    TextRequest,
)
from .models import (
    CONTENT_IMAGE,
    CONTENT_TEXT,
    MESSAGE_AI,
    MESSAGE_USER,
    Message,
    Thread,
    new_id,
    utcnow,
)
from .store import MessagePath, SpaceStore, Upload
from .store import paths as store_paths
from .store.edits import file_from_upload
from .utils import encode_data_url

logger = logging.getLogger(__name__)

SOURCES_HEADING: Final = "출처:"
STREAM_ERROR_MESSAGE: Final = "오류가 발생했습니다. 잠시 후 다시 시도해주세요."
EARLY_ERROR_MESSAGE: Final = "오류가 발생했습니다."
REGENERATE_ERROR_MESSAGE: Final = "재생성 중 오류가 발생했습니다."
IMAGE_FAILED_MESSAGE: Final = "죄송합니다. 이미지를 생성하지 못했습니다."
ATTACHMENT_LABEL: Final = "첨부 파일"


def format_sources(citations: Sequence[Citation]) -> str:
    links = [f"- [{c.title}]({c.url})" for c in citations if c.url and c.title]
    if not links:
        return ""
    return SOURCES_HEADING + "\n" + "\n".join(links)


def attachment_display(text: str, names: Sequence[str]) -> str:
    if not names:
        return text
    note = f"[{ATTACHMENT_LABEL}: {', '.join(names)}]"
    return f"{text}\n{note}" if text else note


class StreamMerge:
    """Folds one fragment sequence into the message at ``path``."""

    def __init__(
        self,
        store: SpaceStore,
        path: MessagePath,
        *,
        is_current: Callable[[], bool] = lambda: True,
    ) -> None:
        self.store = store
        self.path = path
        self.is_current = is_current
        self.text = ""
        self.citations: tuple[Citation, ...] | None = None
        self.fragments_applied = 0

    def apply(self, fragment: Fragment) -> None:
        self.text += fragment.text
        if fragment.citations:
            self.citations = fragment.citations
        total = self.text
        self.store.update_message(self.path, lambda m: dataclasses.replace(m, content=total))
        self.fragments_applied += 1

    def finish(self) -> str:
        sources = format_sources(self.citations or ())
        if sources:
            self.text = f"{self.text}\n\n{sources}"
            total = self.text
            self.store.update_message(self.path, lambda m: dataclasses.replace(m, content=total))
        settle_message(self.store, self.path)
        return self.text

    async def run(self, fragments: AsyncIterable[Fragment]) -> str | None:
        """Consume ``fragments`` in order; None when a newer run took the message over."""
        iterator = aiter(fragments)
        try:
            async for fragment in iterator:
                if not self.is_current():
                    return None
                self.apply(fragment)
        finally:
            if not self.is_current():
                await _aclose(iterator)
        if not self.is_current():
            return None
        return self.finish()


async def _aclose(iterator: AsyncIterator[Fragment]) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()


def settle_message(
    store: SpaceStore, path: MessagePath, *, content: str | None = None
) -> bool:
    """Terminal update: stop streaming, stamp completion, bump the thread."""
    now = utcnow()

    def _settle(message: Message) -> Message:
        fields: dict[str, object] = {"is_streaming": False, "timestamp": now}
        if content is not None:
            fields["content"] = content
        return dataclasses.replace(message, **fields)

    def _thread(thread: Thread) -> Thread:
        messages = store_paths.replace_item(thread.messages, path.message_id, _settle)
        return dataclasses.replace(thread, messages=messages, last_message_at=now)

    return store.update_thread(path.space_id, path.thread_id, _thread)


class ChatCoordinator:
    def __init__(
        self,
        store: SpaceStore,
        text_generator: TextGenerator,
        image_generator: ImageGenerator | None = None,
        *,
        default_model: str | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.store = store
        self.text_generator = text_generator
        self.image_generator = image_generator
        self.default_model = default_model
        self.history_limit = history_limit
        self._runs: dict[str, int] = {}
        self._tokens = itertools.count(1)

    def _claim(self, message_id: str) -> Callable[[], bool]:
        token = next(self._tokens)
        if message_id in self._runs:
            logger.warning("superseding in-flight reply", extra={"message_id": message_id})
        self._runs[message_id] = token
        return lambda: self._runs.get(message_id) == token

    def _release(self, message_id: str, is_current: Callable[[], bool]) -> None:
        if is_current():
            self._runs.pop(message_id, None)

    def is_streaming(self, message_id: str) -> bool:
        return message_id in self._runs

    def _recent(self, messages: tuple[Message, ...]) -> tuple[Message, ...]:
        return messages[-self.history_limit :] if self.history_limit > 0 else ()

    async def create_thread_and_send(
        self,
        space_id: str,
        text: str,
        *,
        mode: str = "text",
        attachments: Sequence[Upload] = (),
        model: str | None = None,
        quoted_context: str | None = None,
    ) -> MessagePath:
        thread = self.store.create_thread(space_id, text, mode=mode)
        return await self.send_message(
            space_id,
            thread.id,
            text,
            mode=mode,
            attachments=attachments,
            model=model,
            quoted_context=quoted_context,
        )

    async def send_message(
        self,
        space_id: str,
        thread_id: str,
        text: str,
        *,
        mode: str = "text",
        attachments: Sequence[Upload] = (),
        model: str | None = None,
        quoted_context: str | None = None,
    ) -> MessagePath:
        space = self.store.get_space(space_id)
        thread = self.store.get_thread(space_id, thread_id)
        history = thread.messages
        now = utcnow()
        user_message = Message(
            id=new_id(),
            type=MESSAGE_USER,
            content_type=CONTENT_TEXT,
            content=attachment_display(text, [upload.name for upload in attachments]),
            timestamp=now,
            quoted_context=quoted_context,
        )

        def _append_user(thread: Thread) -> Thread:
            return dataclasses.replace(
                thread, messages=(*thread.messages, user_message), last_message_at=now
            )

        self.store.apply(
            lambda spaces: store_paths.update_space(
                store_paths.update_thread(spaces, space_id, thread_id, _append_user),
                space_id,
                lambda s: dataclasses.replace(s, last_active=now),
            )
        )

        if mode == "image":
            return await self._reply_with_image(space_id, thread_id, text, model=model)

        reply = Message(
            id=new_id(),
            type=MESSAGE_AI,
            content_type=CONTENT_TEXT,
            content="",
            timestamp=utcnow(),
            is_streaming=True,
        )
        path = MessagePath(space_id, thread_id, reply.id)
        is_current = self._claim(reply.id)
        placed = False
        merge = StreamMerge(self.store, path, is_current=is_current)
        try:
            request = TextRequest(
                prompt=text,
                context_files=space.files,
                instructions=space.instructions,
                web_search_enabled=space.web_search_enabled,
                history=self._recent(history),
                attachments=tuple(file_from_upload(upload) for upload in attachments),
                model=model or self.default_model,
                quoted_context=quoted_context,
            )
            self.store.append_message(space_id, thread_id, reply)
            placed = True
            await merge.run(self.text_generator.stream_text(request))
        except Exception as exc:
            logger.exception(
                "reply generation failed",
                extra={"space_id": space_id, "message_id": reply.id},
                exc_info=exc,
            )
            if is_current():
                if placed and merge.fragments_applied:
                    settle_message(self.store, path, content=STREAM_ERROR_MESSAGE)
                else:
                    path = self._replace_with_error(path, placed)
        finally:
            self._release(reply.id, is_current)
        return path

    def _replace_with_error(self, path: MessagePath, placed: bool) -> MessagePath:
        """Nothing was streamed: drop the empty placeholder and append an error reply."""
        error = Message(
            id=new_id(),
            type=MESSAGE_AI,
            content_type=CONTENT_TEXT,
            content=EARLY_ERROR_MESSAGE,
            timestamp=utcnow(),
        )

        def _thread(thread: Thread) -> Thread:
            messages = thread.messages
            if placed:
                messages = store_paths.remove_item(messages, path.message_id)
            return dataclasses.replace(
                thread, messages=(*messages, error), last_message_at=error.timestamp
            )

        self.store.update_thread(path.space_id, path.thread_id, _thread)
        return MessagePath(path.space_id, path.thread_id, error.id)

    async def _reply_with_image(
        self, space_id: str, thread_id: str, prompt: str, *, model: str | None
    ) -> MessagePath:
        content_type = CONTENT_TEXT
        try:
            if self.image_generator is None:
                raise ValidationError("image generation is not configured")
            result = await self.image_generator.generate_image(
                ImageRequest(prompt=prompt, model=model)
            )
            if result is not None:
                content = encode_data_url(result.data, result.mime_type)
                content_type = CONTENT_IMAGE
            else:
                content = IMAGE_FAILED_MESSAGE
        except Exception as exc:
            logger.exception("image reply failed", extra={"space_id": space_id}, exc_info=exc)
            content = EARLY_ERROR_MESSAGE
        reply = Message(
            id=new_id(),
            type=MESSAGE_AI,
            content_type=content_type,
            content=content,
            timestamp=utcnow(),
        )
        self.store.update_thread(
            space_id,
            thread_id,
            lambda t: dataclasses.replace(
                t, messages=(*t.messages, reply), last_message_at=reply.timestamp
            ),
        )
        return MessagePath(space_id, thread_id, reply.id)

    async def regenerate(
        self, space_id: str, thread_id: str, message_id: str, *, model: str | None = None
    ) -> MessagePath:
        space = self.store.get_space(space_id)
        thread = self.store.get_thread(space_id, thread_id)
        index = next((i for i, m in enumerate(thread.messages) if m.id == message_id), -1)
        if index < 0:
            raise KeyError(f"unknown message: {message_id}")
        if index == 0:
            raise ValidationError("the first message of a thread has no prompt to regenerate")
        target = thread.messages[index]
        if target.type != MESSAGE_AI:
            raise ValidationError("only AI replies can be regenerated")
        prompt_message = thread.messages[index - 1]
        request = TextRequest(
            prompt=prompt_message.content,
            context_files=space.files,
            instructions=space.instructions,
            web_search_enabled=space.web_search_enabled,
            history=self._recent(thread.messages[: index - 1]),
            model=model or self.default_model,
            quoted_context=prompt_message.quoted_context,
        )

        path = MessagePath(space_id, thread_id, message_id)
        is_current = self._claim(message_id)
        self.store.update_message(
            path,
            lambda m: dataclasses.replace(
                m, content="", content_type=CONTENT_TEXT, is_streaming=True
            ),
        )
        try:
            await StreamMerge(self.store, path, is_current=is_current).run(
                self.text_generator.stream_text(request)
            )
        except Exception as exc:
            logger.exception(
                "regeneration failed",
                extra={"space_id": space_id, "message_id": message_id},
                exc_info=exc,
            )
            if is_current():
                settle_message(self.store, path, content=REGENERATE_ERROR_MESSAGE)
        finally:
            self._release(message_id, is_current)
        return path
