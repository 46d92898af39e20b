"""Typed errors raised by the store layer.

Every error carries a stable ``code`` and the HTTP status the API boundary
maps it to. Handlers in ``memory_store.main`` turn them into ``{code, detail}``
JSON bodies; nothing below the API layer knows about HTTP.
"""

from typing import Any


class StoreError(Exception):
    """Base class for all memory store errors."""

    code = "store_error"
    status_code = 500

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    @property
    def headers(self) -> dict[str, str] | None:
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "detail": self.detail}


class NotFoundError(StoreError):
    """A referenced task, run, library item or event does not exist."""

    code = "not_found"
    status_code = 404


class ValidationError(StoreError):
    """Input was rejected (empty title, unknown vocabulary, bad page bounds)."""

    code = "validation_error"
    status_code = 400


class ConflictError(StoreError):
    """A one-shot transition was already taken.

    For a lost supersede race ``current_head_id`` names the chain head the
    caller should re-read before retrying.
    """

    code = "conflict"
    status_code = 409

    def __init__(self, detail: str, current_head_id: str | None = None) -> None:
        super().__init__(detail)
        self.current_head_id = current_head_id

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        if self.current_head_id is not None:
            body["current_head_id"] = self.current_head_id
        return body


class AuthError(StoreError):
    """Missing or invalid caller credential."""

    code = "unauthorized"
    status_code = 401

    @property
    def headers(self) -> dict[str, str] | None:
        return {"WWW-Authenticate": "Bearer"}


class TransientError(StoreError):
    """The backing database was busy or unreachable."""

    code = "transient"
    status_code = 503
