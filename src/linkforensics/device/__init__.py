"""Device fingerprinting."""

from linkforensics.device.fingerprint import (
    FINGERPRINT_PATTERN,
    DeviceFingerprinter,
    rolling_hash,
)

__all__ = [
    "FINGERPRINT_PATTERN",
    "DeviceFingerprinter",
    "rolling_hash",
]
