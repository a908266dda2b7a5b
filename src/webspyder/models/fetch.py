from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class FetchStatus(StrEnum):
    SUCCESS = "success"
    REDIRECT = "redirect"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one logical fetch. Errors are values, never exceptions."""

    url: str
    status: FetchStatus
    body: str = ""
    redirect_to: str | None = None  # Absolute target when status is REDIRECT
    status_code: int | None = None  # None for network errors
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is FetchStatus.SUCCESS
