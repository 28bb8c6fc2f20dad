"""Pillow-backed offscreen rendering capability."""

from typing import Optional
import logging

from PIL import Image, ImageDraw, ImageFont

from linkforensics.capabilities.base import RasterCapability, RasterPattern

logger = logging.getLogger(__name__)


class PillowRaster(RasterCapability):
    """Renders raster patterns with Pillow.

    Output depends on the Pillow build and the available font files, which
    makes the pixel buffer stable per host rendering stack.
    """

    def __init__(self, font_path: Optional[str] = None):
        """Initialize the renderer.

        Args:
            font_path: Optional TrueType font; Pillow's default font otherwise
        """
        self.font_path = font_path
        self._fonts = {}

    def _font(self, size: int):
        if size not in self._fonts:
            if self.font_path:
                self._fonts[size] = ImageFont.truetype(self.font_path, size)
            else:
                self._fonts[size] = ImageFont.load_default()
        return self._fonts[size]

    def render(self, pattern: RasterPattern) -> bytes:
        image = Image.new("RGBA", (pattern.width, pattern.height), (0, 0, 0, 0))
        draw = ImageDraw.Draw(image, "RGBA")

        for op in pattern.ops:
            if op.kind == "rect":
                draw.rectangle(
                    [op.x, op.y, op.x + op.width - 1, op.y + op.height - 1],
                    fill=op.color,
                )
            elif op.kind == "text":
                draw.text((op.x, op.y), op.text, fill=op.color, font=self._font(op.font_size))
            else:
                raise ValueError(f"Unknown draw op: {op.kind}")

        buffer = image.tobytes()
        logger.debug("Rendered %dx%d pattern (%d bytes)", pattern.width, pattern.height, len(buffer))
        return buffer
