"""Per-request correlation ids for storage and HTTP log records.

The HTTP middleware binds an id for each request. The session coordinator
and the storage backends it fans out to read it back so every
``storage.*`` event carries the ``req_id`` of the request that caused it.
Backend calls run as tasks under ``asyncio.gather`` and inherit the caller's
context, so no id has to be threaded through method signatures.
"""

from __future__ import annotations

from contextvars import ContextVar, Token

CORRELATION_HEADER = "x-correlation-id"

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def set_request_id(request_id: str) -> Token:
    """Bind ``request_id`` to the current context.

    Returns the token to hand to :func:`reset_request_id` once the request
    is finished.
    """
    return _request_id_var.set(request_id)


def reset_request_id(token: Token) -> None:
    _request_id_var.reset(token)


def get_request_id() -> str:
    """Return the bound correlation id, or an empty string outside a request."""
    return _request_id_var.get()
