"""Conversion of operator-attached images into model content blocks."""

from __future__ import annotations

import re
from collections.abc import Iterable

from devagent.messages import ImageBlock, ImageSource, TextBlock, ToolResponse

_DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)


def parse_data_url(data_url: str) -> ImageBlock:
    """Turn ``data:<mime>;base64,<payload>`` into an image block.

    Raises:
        ValueError: If the string is not a base64 data URL.
    """
    match = _DATA_URL_PATTERN.match(data_url)
    if match is None:
        raise ValueError(f"Not a base64 data URL: {data_url[:40]!r}")
    return ImageBlock(source=ImageSource(media_type=match.group("mime"), data=match.group("data")))


def format_images_into_blocks(images: Iterable[str] | None) -> list[ImageBlock]:
    return [parse_data_url(image) for image in images or ()]


def format_response_with_images(text: str, images: list[str] | None) -> ToolResponse:
    """Plain text, or text followed by image blocks when images are attached."""
    if images:
        return [TextBlock(text=text), *format_images_into_blocks(images)]
    return text
