"""Response envelopes shared by the v1 routers and the exception handlers."""
from __future__ import annotations

from typing import Any, TypeVar


T = TypeVar("T")


def data_response(payload: T) -> dict[str, T]:
    """Wrap a payload in the standard data envelope."""

    return {"data": payload}


def error_payload(code: str, message: str, **extra: Any) -> dict[str, dict[str, Any]]:
    """Build the ``{"error": {...}}`` body; extra keys sit beside code and message."""

    error: dict[str, Any] = {"code": code, "message": message}
    error.update(extra)
    return {"error": error}
