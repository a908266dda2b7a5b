from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    INVALID_CONFIG = "INVALID_CONFIG"


class WebSpyderError(Exception):
    """Raised for conditions that must stop a crawl before it starts.

    Per-URL fetch failures are never raised; they travel as values inside
    ``PageContent``. This exception is reserved for configuration problems
    and invalid seeds, and is caught by the CLI which reports the suggestion
    and exits non-zero.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }
