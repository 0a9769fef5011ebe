"""Pure thumbnail rendering: decode, choose a render plan, encode.

Nothing here touches storage or the network, so every branch can be exercised
with in-memory bytes.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from io import BytesIO
from typing import TYPE_CHECKING

from PIL import Image, UnidentifiedImageError

from filmweekly.pipeline.domain.errors import ThumbnailConversionError

if TYPE_CHECKING:  # pragma: no cover - type-only imports
    from filmweekly.settings import Settings

GENERIC_CONTENT_TYPE = "application/octet-stream"

_DEFAULT_DISPLAYABLE = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp", "image/avif"})

# Pillow signals undecodable input through several unrelated exception types
_PIL_ERRORS = (UnidentifiedImageError, OSError, ValueError, SyntaxError, EOFError, Image.DecompressionBombError)


class RenderPlan(str, enum.Enum):
    RESIZE = "resize"
    NORMALIZE = "normalize"
    PASSTHROUGH = "passthrough"


@dataclass(frozen=True)
class ThumbnailPolicy:
    """Product policy for derived thumbnails."""

    max_side: int = 720
    quality: int = 85
    normalize_quality: int = 90
    output_format: str = "WEBP"
    cache_control: str = "public, max-age=31536000, immutable"
    key_suffix: str = ".thumbnail.webp"
    displayable_types: frozenset[str] = field(default=_DEFAULT_DISPLAYABLE)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ThumbnailPolicy":
        return cls(
            max_side=settings.thumbnail_max_side,
            quality=settings.thumbnail_quality,
            normalize_quality=settings.thumbnail_normalize_quality,
            output_format=settings.thumbnail_format.upper(),
            cache_control=settings.thumbnail_cache_control,
            key_suffix=settings.thumbnail_key_suffix,
            displayable_types=frozenset(settings.thumbnail_displayable_types),
        )

    @property
    def output_content_type(self) -> str:
        Image.init()
        return Image.MIME.get(self.output_format.upper(), GENERIC_CONTENT_TYPE)


@dataclass(frozen=True)
class ThumbnailRender:
    """Bytes to store under the thumbnail key plus the measured source size."""

    data: bytes
    content_type: str
    width: int
    height: int
    plan: RenderPlan
    output_size: tuple[int, int]


def thumbnail_key_for(original_key: str, suffix: str = ".thumbnail.webp") -> str:
    """Deterministic thumbnail key, so re-runs overwrite the same object."""
    return f"{original_key}{suffix}"


def normalise_content_type(content_type: str | None) -> str:
    if not content_type:
        return GENERIC_CONTENT_TYPE
    return content_type.split(";", 1)[0].strip().lower() or GENERIC_CONTENT_TYPE


def _round_half_up(value: float) -> int:
    # round() uses banker's rounding; 2.5 must become 3
    return int(math.floor(value + 0.5))


def scaled_size(width: int, height: int, max_side: int) -> tuple[int, int] | None:
    """Target size when the longer side exceeds max_side, else None."""
    longest = max(width, height)
    if longest <= max_side:
        return None
    scale = max_side / longest
    return max(1, _round_half_up(width * scale)), max(1, _round_half_up(height * scale))


def plan_render(content_type: str, width: int, height: int, policy: ThumbnailPolicy) -> RenderPlan:
    if scaled_size(width, height, policy.max_side) is not None:
        return RenderPlan.RESIZE
    if normalise_content_type(content_type) not in policy.displayable_types:
        return RenderPlan.NORMALIZE
    return RenderPlan.PASSTHROUGH


def _decode(data: bytes) -> Image.Image:
    image = Image.open(BytesIO(data))
    try:
        image.load()
    except BaseException:
        image.close()
        raise
    return image


def _has_alpha(image: Image.Image) -> bool:
    if image.mode in ("RGBA", "LA", "PA"):
        return True
    return image.mode == "P" and "transparency" in image.info


def _encode(image: Image.Image, policy: ThumbnailPolicy, quality: int) -> bytes:
    output_format = policy.output_format.upper()
    if output_format in ("JPEG", "JPG"):
        if image.mode != "RGB":
            image = image.convert("RGB")
    elif image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA" if _has_alpha(image) else "RGB")
    buffer = BytesIO()
    image.save(buffer, format=output_format, quality=quality)
    return buffer.getvalue()


def render_thumbnail(data: bytes, content_type: str | None, policy: ThumbnailPolicy) -> ThumbnailRender:
    """Render the thumbnail for one original.

    Raises ThumbnailConversionError when the bytes cannot be decoded or the
    result cannot be encoded; the error carries the dimensions when they were
    measured before the failure.
    """
    source_type = normalise_content_type(content_type)
    try:
        image = _decode(data)
    except _PIL_ERRORS as exc:
        raise ThumbnailConversionError(f"unable to decode image: {exc}") from exc

    with image:
        width, height = image.size
        plan = plan_render(source_type, width, height, policy)
        if plan is RenderPlan.PASSTHROUGH:
            return ThumbnailRender(
                data=data,
                content_type=source_type,
                width=width,
                height=height,
                plan=plan,
                output_size=(width, height),
            )
        try:
            scaled = scaled_size(width, height, policy.max_side)
            if scaled is not None:
                target = scaled
                resized = image.resize(target, Image.Resampling.LANCZOS)
                output = _encode(resized, policy, policy.quality)
            else:
                target = (width, height)
                output = _encode(image, policy, policy.normalize_quality)
        except _PIL_ERRORS as exc:
            raise ThumbnailConversionError(
                f"unable to encode thumbnail: {exc}", width=width, height=height
            ) from exc

    return ThumbnailRender(
        data=output,
        content_type=policy.output_content_type,
        width=width,
        height=height,
        plan=plan,
        output_size=target,
    )
