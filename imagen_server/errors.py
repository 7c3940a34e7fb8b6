from __future__ import annotations

from enum import Enum
from pathlib import Path


class ErrorCategory(str, Enum):
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    CONTENT_POLICY = "content_policy"
    GENERIC = "generic"


class GenerationError(Exception):
    """Base class for failures raised while producing artifacts."""


class RemoteAPIError(GenerationError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str = "",
        category: ErrorCategory = ErrorCategory.GENERIC,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.category = category

    @classmethod
    def from_response(cls, status_code: int, body: str) -> "RemoteAPIError":
        return cls(
            f"API request failed with status {status_code}: {body}",
            status_code=status_code,
            body=body,
            category=classify(status_code, body),
        )


class FilesystemError(GenerationError):
    def __init__(self, message: str, *, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


def classify(status_code: int | None, body: str) -> ErrorCategory:
    """Map an upstream status and body onto a stable error category."""
    text = body.upper()
    if status_code in (401, 403) or "API_KEY" in text:
        return ErrorCategory.AUTHENTICATION
    if status_code == 429 or "RATE_LIMIT" in text or "RESOURCE_EXHAUSTED" in text:
        return ErrorCategory.RATE_LIMIT
    if "SAFETY" in text:
        return ErrorCategory.CONTENT_POLICY
    return ErrorCategory.GENERIC
