"""
matting.py: Border-seeded background removal for generated designs.

Designs are requested on a pure white background. Rather than keying out
every bright pixel (which would punch holes in white highlights, eyes and
die-cut outlines), only near-white pixels connected to the image border are
made transparent:

  1. Seed a stack with every near-white pixel on the four borders.
  2. Pop, mark visited, push unvisited near-white 4-neighbours.
  3. Every visited pixel gets alpha = 0; nothing else changes.

A pixel is near-white when R, G and B are all strictly above the threshold.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
from PIL import Image

from .errors import InvalidBufferShape

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 230


@dataclass
class PixelBuffer:
    """Decoded image: row-major RGBA bytes, 4 bytes per pixel."""
    width: int
    height: int
    data: bytearray

    def validate(self) -> None:
        if self.width < 0 or self.height < 0:
            raise InvalidBufferShape(f"Negative dimensions {self.width}x{self.height}")
        if len(self.data) % 4:
            raise InvalidBufferShape(f"Buffer length {len(self.data)} is not a multiple of 4")
        expected = self.width * self.height * 4
        if len(self.data) != expected:
            raise InvalidBufferShape(
                f"Buffer length {len(self.data)} does not match {self.width}x{self.height} RGBA ({expected})"
            )

    # ── Conversions ───────────────────────────────────────────────────────────

    @classmethod
    def from_image_bytes(cls, raw: bytes) -> "PixelBuffer":
        with Image.open(io.BytesIO(raw)) as img:
            rgba = img.convert("RGBA")
        return cls(rgba.width, rgba.height, bytearray(rgba.tobytes()))

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "PixelBuffer":
        if arr.ndim != 3 or arr.shape[2] != 4:
            raise InvalidBufferShape(f"Expected an HxWx4 array, got shape {arr.shape}")
        h, w = arr.shape[:2]
        return cls(w, h, bytearray(np.ascontiguousarray(arr, dtype=np.uint8).tobytes()))

    def to_array(self) -> np.ndarray:
        """HxWx4 uint8 view sharing memory with self.data."""
        self.validate()
        return np.frombuffer(self.data, dtype=np.uint8).reshape(self.height, self.width, 4)

    def to_png_bytes(self) -> bytes:
        self.validate()
        img = Image.frombytes("RGBA", (self.width, self.height), bytes(self.data))
        out = io.BytesIO()
        img.save(out, format="PNG")
        return out.getvalue()

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.width, self.height, bytearray(self.data))


@dataclass(frozen=True)
class MattingResult:
    buffer: PixelBuffer
    cleared: int        # pixels made transparent

    def to_png_bytes(self) -> bytes:
        return self.buffer.to_png_bytes()


def matte(buffer: PixelBuffer, threshold: int = DEFAULT_THRESHOLD) -> MattingResult:
    """
    Make every near-white pixel reachable from the border transparent.

    The input buffer is left untouched; the result holds a copy. Runs in
    O(width × height) time and space with an explicit stack, so image size
    never threatens the call stack.
    """
    buffer.validate()
    if not 0 <= threshold <= 255:
        raise ValueError(f"threshold must be within 0..255, got {threshold}")

    out = buffer.copy()
    width, height = out.width, out.height
    if width == 0 or height == 0:
        return MattingResult(out, 0)

    rgba = out.to_array()
    white = np.all(rgba[:, :, :3] > threshold, axis=2).ravel().tolist()
    visited = bytearray(width * height)

    stack: List[Tuple[int, int]] = []
    for x in range(width):
        if white[x]:
            stack.append((x, 0))
        if white[(height - 1) * width + x]:
            stack.append((x, height - 1))
    for y in range(height):
        if white[y * width]:
            stack.append((0, y))
        if white[y * width + width - 1]:
            stack.append((width - 1, y))

    cleared = 0
    while stack:
        x, y = stack.pop()
        i = y * width + x
        if visited[i]:
            continue
        visited[i] = 1
        cleared += 1

        if x + 1 < width and not visited[i + 1] and white[i + 1]:
            stack.append((x + 1, y))
        if x > 0 and not visited[i - 1] and white[i - 1]:
            stack.append((x - 1, y))
        if y + 1 < height and not visited[i + width] and white[i + width]:
            stack.append((x, y + 1))
        if y > 0 and not visited[i - width] and white[i - width]:
            stack.append((x, y - 1))

    if cleared:
        reached = np.frombuffer(bytes(visited), dtype=np.uint8).reshape(height, width).astype(bool)
        rgba[:, :, 3][reached] = 0

    logger.debug(
        "matte: %dx%d, threshold %d, %d px cleared (%.1f%%)",
        width, height, threshold, cleared, 100.0 * cleared / (width * height),
    )
    return MattingResult(out, cleared)


def remove_background(image_bytes: bytes, threshold: int = DEFAULT_THRESHOLD) -> bytes:
    """Decode → matte → PNG. Raises PIL.UnidentifiedImageError on undecodable input."""
    return matte(PixelBuffer.from_image_bytes(image_bytes), threshold).to_png_bytes()
