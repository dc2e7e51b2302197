from __future__ import annotations


class DomainError(Exception):
    """Base class for errors scoped to a single user operation."""

    status_code = 500


class ValidationError(DomainError, ValueError):
    status_code = 400


class AuthRequiredError(DomainError):
    status_code = 401


class NotFoundError(DomainError):
    status_code = 404


class ExternalProviderError(DomainError):
    """Raised when the bank-data provider cannot complete a call."""

    status_code = 502

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code
