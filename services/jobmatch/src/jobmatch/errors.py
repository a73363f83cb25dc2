from __future__ import annotations


class JobmatchError(Exception):
    """Base class for errors raised by the recommendation service."""


class AuthorizationError(JobmatchError):
    def __init__(self, message: str, *, reason: str = "unauthorized") -> None:
        super().__init__(message)
        self.reason = reason


class ProviderError(JobmatchError):
    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code
