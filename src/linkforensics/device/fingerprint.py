"""Device fingerprinting.

The rendering hash is deterministic per rendering stack (GPU, driver, OS,
font set) and survives IP or VPN changes, which makes it a weak device
identifier across accesses.
"""

from typing import Optional
import logging

from linkforensics.capabilities.base import CapabilitySet, DrawOp, RasterPattern
from linkforensics.core.record import UNAVAILABLE_HASH, DeviceFingerprint

logger = logging.getLogger(__name__)


FINGERPRINT_TEXT = "Secure Share <lock> 0123"

FINGERPRINT_PATTERN = RasterPattern(
    width=240,
    height=60,
    ops=(
        DrawOp(kind="rect", x=125, y=1, width=62, height=20, color=(255, 102, 0, 255)),
        DrawOp(kind="text", x=2, y=15, text=FINGERPRINT_TEXT, color=(0, 102, 153, 255)),
        DrawOp(kind="text", x=4, y=17, text=FINGERPRINT_TEXT, color=(102, 204, 0, 178)),
    ),
)


def rolling_hash(data: bytes) -> str:
    """32-bit rolling hash (``h = h * 31 + byte``) rendered as signed hex."""
    h = 0
    for byte in data:
        h = (h * 31 + byte) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return format(h, "x") if h >= 0 else "-" + format(-h, "x")


class DeviceFingerprinter:
    """Builds a ``DeviceFingerprint`` from the client's capabilities."""

    def __init__(self, pattern: Optional[RasterPattern] = None):
        self.pattern = pattern or FINGERPRINT_PATTERN

    def canvas_hash(self, capabilities: CapabilitySet) -> str:
        """Render the fixed pattern and hash the pixel buffer.

        Returns:
            Hash string, or ``"unavailable"`` if rendering failed
        """
        if not capabilities.raster.supported:
            return UNAVAILABLE_HASH
        try:
            buffer = capabilities.raster.render(self.pattern)
        except Exception as e:
            logger.debug("Canvas rendering failed: %s", e)
            return UNAVAILABLE_HASH
        if not buffer:
            return UNAVAILABLE_HASH
        return rolling_hash(buffer)

    def fingerprint(self, capabilities: CapabilitySet) -> DeviceFingerprint:
        """Collect the device fingerprint. Synchronous; never raises."""
        canvas_hash = self.canvas_hash(capabilities)
        try:
            env = capabilities.environment.read()
        except Exception as e:
            logger.warning("Environment attributes unavailable: %s", e)
            return DeviceFingerprint(canvas_hash=canvas_hash)

        languages = env.languages or ((env.language,) if env.language else ())
        return DeviceFingerprint(
            canvas_hash=canvas_hash,
            screen=env.screen,
            timezone=env.timezone,
            languages=tuple(languages),
            platform=env.platform,
            hardware_concurrency=env.hardware_concurrency,
            device_memory=env.device_memory,
            language=env.language or (languages[0] if languages else None),
            cookie_enabled=env.cookie_enabled,
            do_not_track=env.do_not_track,
        )
