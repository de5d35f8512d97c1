"""Capture components for the identity documents and the selfie.

The device camera produces the raw image. Capturing here means accepting
those bytes, checking they are usable and producing the encoded payload
the vendor and backend expect.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Union

from PIL import Image, ImageOps, ImageStat, UnidentifiedImageError

from ..errors import VerificationError

logger = logging.getLogger(__name__)

DATA_URI_PATTERN = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,", re.IGNORECASE)

# Longest edge after downscaling
MAX_EDGE = 1600
JPEG_QUALITY = 85
# Decoded size limit, checked from the header before any pixels are read
MAX_PIXELS = 40_000_000


class CaptureKind(str, Enum):
    ID_FRONT = "id_front"
    ID_BACK = "id_back"
    SELFIE = "selfie"


@dataclass(frozen=True)
class QualityRules:
    min_width: int
    min_height: int
    min_brightness: float = 40.0
    max_brightness: float = 230.0
    min_contrast: float = 12.0


# ID cards are captured in landscape, selfies in portrait
QUALITY_RULES: dict[CaptureKind, QualityRules] = {
    CaptureKind.ID_FRONT: QualityRules(min_width=640, min_height=400),
    CaptureKind.ID_BACK: QualityRules(min_width=640, min_height=400),
    CaptureKind.SELFIE: QualityRules(min_width=320, min_height=320),
}


class CaptureError(VerificationError):
    """The captured image cannot be used."""

    default_code = "CAPTURE_REJECTED"

    def __init__(self, kind: CaptureKind, reasons: list[str]) -> None:
        super().__init__(
            f"{kind.value} image rejected: {'; '.join(reasons)}",
            details={"kind": kind.value, "reasons": reasons},
        )
        self.kind = kind
        self.reasons = reasons


@dataclass(frozen=True)
class CapturedImage:
    """An encoded capture ready to be sent upstream."""

    kind: CaptureKind
    content: bytes
    width: int
    height: int
    mime_type: str = "image/jpeg"

    def as_base64(self) -> str:
        return base64.b64encode(self.content).decode("ascii")

    def as_data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.as_base64()}"


ImageSource = Union[bytes, bytearray, str, Path]


def strip_data_uri(value: str) -> str:
    """Remove a ``data:image/...;base64,`` prefix if present."""
    return DATA_URI_PATTERN.sub("", value.strip(), count=1)


def _read_source(source: ImageSource, kind: CaptureKind) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)

    if isinstance(source, Path):
        return source.read_bytes()

    if isinstance(source, str):
        if DATA_URI_PATTERN.match(source.strip()):
            encoded = strip_data_uri(source)
        elif len(source) < 1024 and Path(source).is_file():
            return Path(source).read_bytes()
        else:
            encoded = source.strip()
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            raise CaptureError(kind, ["payload is not valid base64"])

    raise TypeError(f"Unsupported image source: {type(source).__name__}")


def check_quality(image: Image.Image, rules: QualityRules) -> list[str]:
    """Return the reasons an image fails the quality gate (empty if it passes)."""
    reasons: list[str] = []

    width, height = image.size
    # Accept either orientation; the longer edge is compared to the larger minimum
    long_edge, short_edge = max(width, height), min(width, height)
    min_long, min_short = max(rules.min_width, rules.min_height), min(rules.min_width, rules.min_height)
    if long_edge < min_long or short_edge < min_short:
        reasons.append(f"low resolution ({width}x{height})")

    stat = ImageStat.Stat(image.convert("L"))
    brightness = stat.mean[0]
    contrast = stat.stddev[0]
    if brightness < rules.min_brightness:
        reasons.append(f"too dark (mean={brightness:.1f})")
    elif brightness > rules.max_brightness:
        reasons.append(f"too bright (mean={brightness:.1f})")
    if contrast < rules.min_contrast:
        reasons.append(f"low contrast (std={contrast:.1f})")

    return reasons


def capture_image(
    source: ImageSource,
    kind: CaptureKind,
    rules: QualityRules | None = None,
) -> CapturedImage:
    """Decode, check and re-encode a captured image.

    Args:
        source: Raw bytes, a file path, or a base64 string / data URI
        kind: Which capture this is
        rules: Quality rules; defaults to the rules for ``kind``

    Returns:
        The JPEG-encoded capture

    Raises:
        CaptureError: If the image cannot be decoded or fails the quality gate
    """
    raw = _read_source(source, kind)
    if not raw:
        raise CaptureError(kind, ["empty image"])

    try:
        with Image.open(io.BytesIO(raw)) as opened:
            width, height = opened.size
            if width * height > MAX_PIXELS:
                raise CaptureError(kind, [f"image too large ({width}x{height})"])
            image = ImageOps.exif_transpose(opened)
            image = image.convert("RGB")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise CaptureError(kind, [f"unreadable image ({type(e).__name__})"]) from e

    reasons = check_quality(image, rules or QUALITY_RULES[kind])
    if reasons:
        logger.info(f"Rejected {kind.value} capture: {', '.join(reasons)}")
        raise CaptureError(kind, reasons)

    if max(image.size) > MAX_EDGE:
        image.thumbnail((MAX_EDGE, MAX_EDGE))

    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=JPEG_QUALITY)
    width, height = image.size

    logger.debug(f"Captured {kind.value} image {width}x{height}")
    return CapturedImage(kind=kind, content=buffer.getvalue(), width=width, height=height)
