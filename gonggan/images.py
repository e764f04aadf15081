from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Sequence
from typing import Final

from .errors import ValidationError
from .generation import (
    MAX_REFERENCE_IMAGES,
    ImageGenerator,
    ImageRequest,
    ReferenceImage,
)
from .models import IMAGE_COMPLETED, IMAGE_FAILED, GeneratedImage, Space
from .store import SpaceStore
from .store.edits import placeholder_image

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE: Final = 4


def validate_batch(count: int, reference_images: Sequence[ReferenceImage]) -> None:
    if not 1 <= count <= MAX_BATCH_SIZE:
        raise ValidationError(f"Batch count must be between 1 and {MAX_BATCH_SIZE}, got {count}")
    if len(reference_images) > MAX_REFERENCE_IMAGES:
        raise ValidationError(
            f"At most {MAX_REFERENCE_IMAGES} reference images are allowed, "
            f"got {len(reference_images)}"
        )


def gallery_references(space: Space, image_ids: Sequence[str]) -> list[ReferenceImage]:
    """Reuse completed gallery images as references for the next batch."""
    by_id = {image.id: image for image in space.generated_images}
    references: list[ReferenceImage] = []
    for image_id in image_ids:
        image = by_id.get(image_id)
        if image is None:
            raise ValidationError(f"Unknown gallery image: {image_id}")
        if image.status != IMAGE_COMPLETED or not image.data:
            raise ValidationError(f"Gallery image {image_id} has no completed result")
        references.append(ReferenceImage(data=image.data, mime_type=image.mime_type))
    return references


async def _resolve(
    store: SpaceStore,
    generator: ImageGenerator,
    space_id: str,
    placeholder: GeneratedImage,
    request: ImageRequest,
) -> GeneratedImage | None:
    try:
        result = await generator.generate_image(request)
    except Exception as exc:
        logger.exception(
            "image generation failed",
            extra={"space_id": space_id, "image_id": placeholder.id},
            exc_info=exc,
        )
        result = None
    if result is None:
        def transform(image: GeneratedImage) -> GeneratedImage:
            return dataclasses.replace(image, status=IMAGE_FAILED)
    else:
        def transform(image: GeneratedImage) -> GeneratedImage:
            return dataclasses.replace(
                image, status=IMAGE_COMPLETED, data=result.data, mime_type=result.mime_type
            )
    store.update_image(space_id, placeholder.id, transform)
    space = store.find_space(space_id)
    if space is None:
        return None
    return next((image for image in space.generated_images if image.id == placeholder.id), None)


async def generate_image_batch(
    store: SpaceStore,
    generator: ImageGenerator,
    space_id: str,
    prompt: str,
    *,
    aspect_ratio: str = "1:1",
    quality: str = "1K",
    count: int = 1,
    model: str | None = None,
    reference_images: Sequence[ReferenceImage] = (),
) -> list[GeneratedImage]:
    """Generate ``count`` images concurrently into the space's gallery.

    Placeholders are prepended in ``generating`` state before any request is
    issued. Each one is later resolved on its own, so a failed request only
    marks its own placeholder ``failed``. Returns the resolved images in
    placeholder order.
    """
    validate_batch(count, reference_images)
    store.get_space(space_id)
    request = ImageRequest(
        prompt=prompt,
        aspect_ratio=aspect_ratio,
        quality=quality,
        model=model,
        reference_images=tuple(reference_images),
    )
    placeholders = [placeholder_image(prompt, aspect_ratio, quality) for _ in range(count)]
    store.add_images(space_id, placeholders)
    logger.info(
        "image batch started",
        extra={"space_id": space_id, "count": count, "aspect_ratio": aspect_ratio},
    )
    resolved = await asyncio.gather(
        *(_resolve(store, generator, space_id, p, request) for p in placeholders)
    )
    return [image for image in resolved if image is not None]
