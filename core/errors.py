"""
CarePath Triage – Error Taxonomy
=================================
Exceptions raised across the triage engine.

Only ``ValidationError`` and ``CatalogIntegrityError`` ever reach a caller.
The generative-branch errors are caught by the care-pathway pipeline and
turned into warnings on a rule-only result.
"""

from __future__ import annotations

from typing import List, Optional


class CarePathError(Exception):
    """Base class for all CarePath errors."""


class ValidationError(CarePathError):
    """Request input is missing, malformed or out of range."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid request")


class CatalogIntegrityError(CarePathError):
    """Reference data is inconsistent. Raised while loading, never per request."""


class UpstreamError(CarePathError):
    """The generation provider answered with a non-2xx or unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class GenerationTimeoutError(CarePathError, TimeoutError):
    """The generation provider did not answer within the configured deadline."""


class RateLimitedError(CarePathError):
    """Admission to the generation provider was denied for this client."""

    def __init__(self, client_key: str, retry_after_s: int = 60):
        self.client_key = client_key
        self.retry_after_s = retry_after_s
        super().__init__(f"Rate limit exceeded for client; retry after {retry_after_s}s")


class ServiceUnavailableError(CarePathError):
    """The generation provider is not configured (e.g. no API credential)."""
