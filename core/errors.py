"""
Client-side error taxonomy.

- AuthenticationError: 401/403. Handled globally (session teardown on 401),
  never surfaced to the user during background polling.
- TransportError: the request never produced an HTTP response (DNS, refused,
  timeout). Retry-eligible; polling acts as the implicit retry.
- ClientValidationError: caught before any network call (e.g. no position yet).
- ServerRejectedError: the server answered with an error (e.g. request already
  taken). Carries the server-provided message.
"""
from typing import Optional


class ApiError(Exception):
    """Base for every error raised by the API layer."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self):
        if self.status_code is None:
            return self.message
        return f"{self.status_code}: {self.message}"


class AuthenticationError(ApiError):
    pass


class TransportError(ApiError):
    def __init__(self, message: str):
        super().__init__(message, status_code=None)


class ServerRejectedError(ApiError):
    pass


class ClientValidationError(ApiError):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, status_code=None)
        self.field = field


def is_auth_failure(exc: BaseException) -> bool:
    """True for 401/403 failures, which background refreshes keep quiet about."""
    return isinstance(exc, AuthenticationError) or (
        isinstance(exc, ApiError) and exc.status_code in (401, 403)
    )
