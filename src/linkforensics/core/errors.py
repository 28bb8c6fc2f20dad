"""Exceptions raised inside the capture engine.

None of these escape the public component boundaries: probes, strategies
and stores convert them into "no value for this signal".
"""

from typing import List, Optional


class ForensicsError(Exception):
    """Base exception for capture engine errors."""
    pass


class ProbeTimeout(ForensicsError):
    """A strategy or provider exceeded its time bound."""

    def __init__(self, source: str, timeout: float):
        self.source = source
        self.timeout = timeout
        super().__init__(f"{source} timed out after {timeout:.1f}s")


class ProbeUnavailable(ForensicsError):
    """A capability is not supported on this platform."""

    def __init__(self, capability: str, reason: str = ""):
        self.capability = capability
        self.reason = reason
        message = f"Capability '{capability}' unavailable"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class AllProvidersExhausted(ForensicsError):
    """Every provider in an ordered fallback chain failed."""

    def __init__(self, chain: str, failures: Optional[List[str]] = None):
        self.chain = chain
        self.failures = failures or []
        super().__init__(
            f"All providers exhausted for {chain} ({len(self.failures)} attempted)"
        )


class PersistenceUnavailable(ForensicsError):
    """The store is not configured or cannot be reached."""
    pass


class ConfigurationError(ForensicsError):
    """Raised when engine configuration is invalid."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("Invalid configuration: " + "; ".join(errors))
