from typing import Any

from core.errors import ServerRejectedError


def unwrap(body: Any, status_code: int = 200):
    """
    Return the payload of the backend's standard envelope.

    Envelope: {"success": bool, "message": str | None, "data": ...}
    Some endpoints (ratings) answer with the bare object; those pass through.
    """
    if isinstance(body, dict) and "success" in body:
        if body.get("success") is False:
            raise ServerRejectedError(error_message(body, "Request failed"), status_code=status_code)
        return body.get("data")
    return body


def error_message(body: Any, default: str = "An internal error occurred") -> str:
    """Pull the human-readable message out of an error body."""
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
    if isinstance(body, str) and body.strip():
        return body.strip()
    return default
