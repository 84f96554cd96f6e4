"""
YUYV frame to JPEG conversion.

Converts one raw 4:2:2 frame into RGB, optionally stamps the capture time
near the bottom-right corner, and compresses the result as JPEG.
"""

import io
import time
from dataclasses import dataclass
from typing import Optional

import numpy as np
from PIL import Image, ImageDraw, ImageFont

# Accent colour and anchor of the timestamp, measured from the bottom-right
TIMESTAMP_COLOR = (200, 100, 0)
TIMESTAMP_OFFSET = (300, 20)
# RFC 850, e.g. "Monday, 02-Jan-06 15:04:05 UTC"
TIMESTAMP_FORMAT = "%A, %d-%b-%y %H:%M:%S UTC"


class EncodeError(Exception):
    """Raised when a frame cannot be converted or compressed."""
    pass


@dataclass(frozen=True, eq=False)
class EncodedImage:
    """A compressed frame shared by every viewer of one broadcast cycle."""

    data: bytes
    sequence: int
    width: int
    height: int
    timestamp: float

    def __len__(self):
        return len(self.data)


def yuyv_to_image(frame, width: int, height: int) -> Image.Image:
    """
    Convert a packed YUYV 4:2:2 buffer (Y0 U Y1 V per pixel pair) to RGB.

    Each U/V sample is shared by two horizontally adjacent pixels, so the
    chroma planes are repeated along the x axis before conversion.
    """
    expected = width * height * 2
    if width <= 0 or height <= 0 or width % 2:
        raise EncodeError(f"Invalid YUYV frame size {width}x{height}")
    if len(frame) < expected:
        raise EncodeError(f"Short frame: got {len(frame)} bytes, expected {expected}")

    packed = np.frombuffer(frame, dtype=np.uint8, count=expected).reshape(height, width // 2, 4)
    y = packed[:, :, 0::2].reshape(height, width)
    cb = np.repeat(packed[:, :, 1], 2, axis=1)
    cr = np.repeat(packed[:, :, 3], 2, axis=1)

    try:
        planes = [Image.fromarray(np.ascontiguousarray(p)) for p in (y, cb, cr)]
        return Image.merge("YCbCr", planes).convert("RGB")
    except (ValueError, OSError) as e:
        raise EncodeError(f"Pixel conversion failed: {e}") from e


def annotate(img: Image.Image, text: str):
    """
    Draw `text` near the bottom-right corner in the fixed-width bitmap font.

    Best effort: failures are logged and the image is left as it was.
    """
    try:
        draw = ImageDraw.Draw(img)
        font = _bitmap_font()
        # The offset is to the text baseline; Pillow positions by the top edge
        ascent = font.getbbox("A")[3]
        x = img.width - TIMESTAMP_OFFSET[0]
        y = img.height - TIMESTAMP_OFFSET[1] - ascent
        draw.text((max(x, 0), max(y, 0)), text, fill=TIMESTAMP_COLOR, font=font)
    except Exception as e:
        print(f"[encoder] Annotation skipped: {e}")


_font = None


def _bitmap_font():
    global _font
    if _font is None:
        # Fixed-width bitmap face bundled with Pillow
        _font = ImageFont.load_default_imagefont()
    return _font


def compress(img: Image.Image, quality: int = 75) -> bytes:
    """JPEG-encode `img` into a freshly allocated buffer."""
    buffer = io.BytesIO()
    try:
        img.save(buffer, format="JPEG", quality=quality)
    except (OSError, ValueError) as e:
        raise EncodeError(f"JPEG compression failed: {e}") from e
    return buffer.getvalue()


class FrameEncoder:
    """
    Turns raw frames of a fixed size into EncodedImages.

    Usage:
        encoder = FrameEncoder(1024, 768)
        image = encoder.encode(raw)
    """

    def __init__(
        self,
        width: int,
        height: int,
        quality: int = 75,
        timestamp: bool = True,
        clock=time.time
    ):
        self.width = width
        self.height = height
        self.quality = quality
        self.timestamp = timestamp
        self._clock = clock
        self._sequence = 0

    def encode(self, frame, captured_at: Optional[float] = None) -> EncodedImage:
        now = self._clock() if captured_at is None else captured_at
        img = yuyv_to_image(frame, self.width, self.height)
        if self.timestamp:
            annotate(img, format_timestamp(now))
        data = compress(img, self.quality)

        self._sequence += 1
        return EncodedImage(
            data=data,
            sequence=self._sequence,
            width=self.width,
            height=self.height,
            timestamp=now
        )


def format_timestamp(ts: float) -> str:
    return time.strftime(TIMESTAMP_FORMAT, time.gmtime(ts))
