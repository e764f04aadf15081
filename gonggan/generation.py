from __future__ import annotations

import base64
import logging
import os
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any, Final, Protocol

import httpx

from .config import DEFAULT_HISTORY_LIMIT, GongganConfig, load_config
from .errors import GenerationError, ValidationError
from .models import CONTENT_IMAGE, CONTENT_TEXT, MESSAGE_USER, Message, SpaceFile
from .utils import b64encode_text, encode_data_url

logger = logging.getLogger(__name__)

DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-5"
SYSTEM_PROMPT = (
    "You are Gonggan Agent. Speak Korean. Answer naturally without using Markdown "
    "headers (###) or code blocks (```) unless specifically asked for code. Keep "
    "responses clean and conversational."
)

MAX_REFERENCE_IMAGES: Final = 7
SUPPORTED_ASPECT_RATIOS: Final[tuple[str, ...]] = ("1:1", "3:4", "4:3", "9:16", "16:9")
ASPECT_RATIO_FALLBACKS: Final[dict[str, str]] = {
    "Auto": "1:1",
    "21:9": "16:9",
    "5:4": "4:3",
    "3:2": "4:3",
}
# gpt-image sizes closest to each supported ratio.
ASPECT_RATIO_SIZES: Final[dict[str, str]] = {
    "1:1": "1024x1024",
    "3:4": "1024x1536",
    "9:16": "1024x1536",
    "4:3": "1536x1024",
    "16:9": "1536x1024",
}
QUALITY_TIERS: Final[dict[str, str]] = {"1K": "low", "2K": "medium", "4K": "high"}


@dataclass(frozen=True, slots=True)
class Citation:
    title: str
    url: str


@dataclass(frozen=True, slots=True)
class Fragment:
    text: str
    citations: tuple[Citation, ...] | None = None


@dataclass(frozen=True, slots=True)
class TextRequest:
    prompt: str
    context_files: tuple[SpaceFile, ...] = ()
    instructions: str = ""
    web_search_enabled: bool = False
    history: tuple[Message, ...] = ()
    attachments: tuple[SpaceFile, ...] = ()
    model: str | None = None
    quoted_context: str | None = None


@dataclass(frozen=True, slots=True)
class ReferenceImage:
    data: bytes
    mime_type: str = "image/png"


@dataclass(frozen=True, slots=True)
class ImageRequest:
    prompt: str
    aspect_ratio: str = "1:1"
    quality: str = "1K"
    model: str | None = None
    reference_images: tuple[ReferenceImage, ...] = ()

    def __post_init__(self) -> None:
        if len(self.reference_images) > MAX_REFERENCE_IMAGES:
            raise ValidationError(
                f"At most {MAX_REFERENCE_IMAGES} reference images are allowed, "
                f"got {len(self.reference_images)}"
            )


@dataclass(frozen=True, slots=True)
class ImageResult:
    data: bytes
    mime_type: str = "image/png"


class TextGenerator(Protocol):
    def stream_text(self, request: TextRequest) -> AsyncIterator[Fragment]: ...


class ImageGenerator(Protocol):
    async def generate_image(self, request: ImageRequest) -> ImageResult | None: ...


def normalize_aspect_ratio(ratio: str) -> str:
    if ratio in SUPPORTED_ASPECT_RATIOS:
        return ratio
    return ASPECT_RATIO_FALLBACKS.get(ratio, "1:1")


def strip_bold(text: str) -> str:
    return text.replace("**", "")


def _inline_part(file: SpaceFile) -> dict[str, Any]:
    return {"inline_data": {"data": file.data, "mime_type": file.mime_type, "name": file.name}}


def build_prompt_parts(
    request: TextRequest, *, history_limit: int = DEFAULT_HISTORY_LIMIT
) -> list[dict[str, Any]]:
    """Assemble the ordered, provider-neutral prompt parts for one turn.

    Parts are either ``{"text": str}`` or ``{"inline_data": {...}}`` carrying raw
    bytes; providers encode inline data for their own wire format.
    """

    parts: list[dict[str, Any]] = []
    if request.context_files:
        parts.append({"text": "--- BEGIN PROJECT CONTEXT FILES ---"})
        for file in request.context_files:
            if file.data and file.mime_type:
                parts.append(_inline_part(file))
                parts.append({"text": f"[File: {file.name}]"})
            elif file.kind == "link":
                parts.append({"text": f"[Link: {file.name}]"})
        parts.append({"text": "--- END PROJECT CONTEXT FILES ---"})

    if request.attachments:
        parts.append({"text": "--- BEGIN CURRENT MESSAGE ATTACHMENTS ---"})
        for file in request.attachments:
            if file.data and file.mime_type:
                parts.append(_inline_part(file))
                parts.append({"text": f"[Attached File: {file.name}]"})
        parts.append({"text": "--- END ATTACHMENTS ---"})

    if request.instructions:
        parts.append({"text": f"[PROJECT INSTRUCTIONS]: {request.instructions}"})

    history = request.history[-history_limit:] if history_limit > 0 else ()
    if history:
        parts.append({"text": "--- PREVIOUS CONVERSATION HISTORY ---"})
        for message in history:
            role = "User" if message.type == MESSAGE_USER else "AI"
            if message.content_type == CONTENT_TEXT:
                parts.append({"text": f"{role}: {message.content}"})
            elif message.content_type == CONTENT_IMAGE:
                parts.append({"text": f"{role}: [Generated an Image]"})
        parts.append({"text": "--- END HISTORY ---"})

    if request.quoted_context:
        parts.append({"text": f"[QUOTED CONTEXT]: \"{request.quoted_context}\""})
    parts.append({"text": f"User Query: {request.prompt}"})
    return parts


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _openai_content(parts: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    content: list[dict[str, Any]] = []
    for part in parts:
        if "text" in part:
            content.append({"type": "text", "text": part["text"]})
            continue
        inline = part["inline_data"]
        mime_type = inline["mime_type"] or "application/octet-stream"
        if mime_type.startswith("image/"):
            content.append(
                {"type": "image_url", "image_url": {"url": encode_data_url(inline["data"], mime_type)}}
            )
        elif mime_type == "application/pdf":
            content.append(
                {
                    "type": "file",
                    "file": {
                        "filename": inline["name"],
                        "file_data": encode_data_url(inline["data"], mime_type),
                    },
                }
            )
        elif mime_type.startswith("text/"):
            content.append({"type": "text", "text": inline["data"].decode("utf-8", "replace")})
    return content


def _anthropic_content(parts: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    content: list[dict[str, Any]] = []
    for part in parts:
        if "text" in part:
            content.append({"type": "text", "text": part["text"]})
            continue
        inline = part["inline_data"]
        mime_type = inline["mime_type"] or "application/octet-stream"
        source = {"type": "base64", "media_type": mime_type, "data": b64encode_text(inline["data"])}
        if mime_type.startswith("image/"):
            content.append({"type": "image", "source": source})
        elif mime_type == "application/pdf":
            content.append({"type": "document", "source": source})
        elif mime_type.startswith("text/"):
            content.append({"type": "text", "text": inline["data"].decode("utf-8", "replace")})
    return content


def openai_citations(delta: Any) -> tuple[Citation, ...] | None:
    annotations = _field(delta, "annotations") or []
    citations: list[Citation] = []
    for annotation in annotations:
        if _field(annotation, "type") != "url_citation":
            continue
        detail = _field(annotation, "url_citation") or annotation
        citations.append(
            Citation(title=str(_field(detail, "title") or ""), url=str(_field(detail, "url") or ""))
        )
    return tuple(citations) or None


class ModelClient:
    """Text and image generation backed by the OpenAI or Anthropic SDK."""

    def __init__(self, config: GongganConfig | None = None) -> None:
        cfg = config or load_config()
        self.provider = cfg.provider
        self.history_limit = cfg.history_limit
        self.max_tokens = 4096
        self.image_model = cfg.image_model
        if self.provider == "anthropic" and cfg.text_model.startswith("gpt"):
            self.text_model = DEFAULT_ANTHROPIC_MODEL
        else:
            self.text_model = cfg.text_model
        self.client: Any | None = None
        self.image_client: Any | None = None

        timeout = httpx.Timeout(cfg.request_timeout_s)
        openai_key = cfg.api_key if self.provider == "openai" else None
        openai_key = openai_key or os.getenv("OPENAI_API_KEY")
        if self.provider == "anthropic":
            api_key = cfg.api_key or os.getenv("ANTHROPIC_API_KEY")
            if not api_key:
                logger.warning("model auth: missing anthropic api key")
            else:
                try:
                    import anthropic  # type: ignore

                    self.client = anthropic.AsyncAnthropic(
                        api_key=api_key, base_url=cfg.base_url, timeout=timeout
                    )
                except Exception as exc:  # pragma: no cover
                    logger.exception("model auth: anthropic client init failed", exc_info=exc)
                    self.client = None
        if not openai_key:
            logger.warning("model auth: missing openai api key")
            return
        try:
            from openai import AsyncOpenAI  # type: ignore

            openai_client = AsyncOpenAI(
                api_key=openai_key,
                base_url=cfg.base_url if self.provider == "openai" else None,
                timeout=timeout,
            )
        except Exception as exc:  # pragma: no cover
            logger.exception("model auth: openai client init failed", exc_info=exc)
            return
        self.image_client = openai_client
        if self.provider == "openai":
            self.client = openai_client

    async def stream_text(self, request: TextRequest) -> AsyncIterator[Fragment]:
        if self.client is None:
            raise GenerationError("API key is missing")
        model = request.model or self.text_model
        parts = build_prompt_parts(request, history_limit=self.history_limit)
        try:
            if self.provider == "anthropic":
                async for fragment in self._stream_anthropic(model, parts, request):
                    yield fragment
            else:
                async for fragment in self._stream_openai(model, parts, request):
                    yield fragment
        except GenerationError:
            raise
        except Exception as exc:
            logger.exception(
                "text generation failed",
                extra={"provider": self.provider, "model": model},
                exc_info=exc,
            )
            raise GenerationError(f"text generation failed: {exc}") from exc

    async def _stream_openai(
        self, model: str, parts: list[dict[str, Any]], request: TextRequest
    ) -> AsyncIterator[Fragment]:
        extra: dict[str, Any] = {}
        if request.web_search_enabled:
            extra["web_search_options"] = {}
        stream = await self.client.chat.completions.create(  # type: ignore[union-attr]
            model=model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": _openai_content(parts)},
            ],
            stream=True,
            **extra,
        )
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            text = strip_bold(_field(delta, "content") or "")
            citations = openai_citations(delta)
            if text or citations:
                yield Fragment(text=text, citations=citations)

    async def _stream_anthropic(
        self, model: str, parts: list[dict[str, Any]], request: TextRequest
    ) -> AsyncIterator[Fragment]:
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": self.max_tokens,
            "system": SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": _anthropic_content(parts)}],
        }
        if request.web_search_enabled:
            kwargs["tools"] = [{"type": "web_search_20250305", "name": "web_search", "max_uses": 5}]
        citations: list[Citation] = []
        async with self.client.messages.stream(**kwargs) as stream:  # type: ignore[union-attr]
            async for event in stream:
                if _field(event, "type") != "content_block_delta":
                    continue
                delta = event.delta
                if delta.type == "text_delta":
                    text = strip_bold(delta.text or "")
                    if text:
                        yield Fragment(text=text)
                elif delta.type == "citations_delta":
                    citation = delta.citation
                    url = _field(citation, "url")
                    if not url or any(c.url == url for c in citations):
                        continue
                    citations.append(Citation(title=str(_field(citation, "title") or ""), url=url))
                    yield Fragment(text="", citations=tuple(citations))

    async def generate_image(self, request: ImageRequest) -> ImageResult | None:
        if self.image_client is None:
            raise GenerationError("API key is missing")
        model = request.model or self.image_model
        size = ASPECT_RATIO_SIZES[normalize_aspect_ratio(request.aspect_ratio)]
        quality = QUALITY_TIERS.get(request.quality, "auto")
        try:
            if request.reference_images:
                images = [
                    (f"reference_{index}.png", ref.data, ref.mime_type)
                    for index, ref in enumerate(request.reference_images)
                ]
                response = await self.image_client.images.edit(
                    model=model, image=images, prompt=request.prompt, size=size, quality=quality
                )
            else:
                response = await self.image_client.images.generate(
                    model=model, prompt=request.prompt, size=size, quality=quality, n=1
                )
        except Exception as exc:
            logger.exception(
                "image generation failed", extra={"model": model, "size": size}, exc_info=exc
            )
            raise GenerationError(f"image generation failed: {exc}") from exc
        for item in response.data or []:
            encoded = _field(item, "b64_json")
            if encoded:
                return ImageResult(data=base64.b64decode(encoded))
        return None
