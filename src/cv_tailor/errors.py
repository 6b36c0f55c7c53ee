"""Error types for the generation pipeline.

Every error carries a ``kind`` string naming its place in the taxonomy so it
can be reported to callers without leaking Python class names.
"""

from __future__ import annotations

EXCERPT_LENGTH = 200


def excerpt(text: str | None, limit: int = EXCERPT_LENGTH) -> str:
    """Return a bounded prefix of untrusted text for diagnostics."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class CvTailorError(Exception):
    """Base error for the pipeline."""

    kind = "Error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error_kind": self.kind, "message": self.message}


class ConfigurationError(CvTailorError):
    """No usable provider or credentials could be resolved."""

    kind = "ConfigurationError"


class ProviderConnectionError(CvTailorError):
    """DNS failure, refused connection or unreachable host."""

    kind = "ConnectionError"


class ProviderTimeoutError(CvTailorError):
    kind = "TimeoutError"


class UpstreamError(CvTailorError):
    """Provider answered with a non-success HTTP status."""

    kind = "UpstreamError"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["status_code"] = self.status_code
        return d


class MalformedResponseError(CvTailorError):
    """Success status, but the response envelope lacks the text field."""

    kind = "MalformedResponseError"


class ParseError(CvTailorError):
    """Model text is present but no JSON object could be recovered."""

    kind = "ParseError"

    def __init__(self, message: str, raw_text: str | None = None):
        super().__init__(message)
        self.excerpt = excerpt(raw_text)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["excerpt"] = self.excerpt
        return d


class ValidationError(CvTailorError):
    """Parsed payload does not have the expected section or field shape."""

    kind = "ValidationError"


class DocumentNotFoundError(CvTailorError):
    kind = "NotFound"


class VariantExistsError(CvTailorError):
    """A derived variant already exists for this source context."""

    kind = "Conflict"

    def __init__(self, message: str, variant_id: str):
        super().__init__(message)
        self.variant_id = variant_id

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["variant_id"] = self.variant_id
        return d
