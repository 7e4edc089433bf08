"""
Intent correlation ids.

Every intent (dashboard request, assistant function call, cloud set command)
runs inside an ``intent_context`` so the log lines it produces, including the
ones emitted by a publish task spawned from it, share one id.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "get_intent_id",
    "intent_context",
    "new_intent_id",
]

_intent_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("intent_id", default=None)


def new_intent_id(source: str) -> str:
    """Return an id of the form ``<source>-<8 hex chars>``, e.g. ``ui-1f2e3d4c``."""
    return f"{source}-{uuid.uuid4().hex[:8]}"


def get_intent_id() -> str | None:
    return _intent_id.get()


@contextmanager
def intent_context(source: str, intent_id: str | None = None) -> Generator[str]:
    """
    Scope an intent id to the current context.

    Tasks created inside the block copy the context, so the id follows a
    fire-and-forget publish. The previous id is restored on exit.
    """
    token = _intent_id.set(intent_id or new_intent_id(source))
    try:
        yield _intent_id.get() or ""
    finally:
        _intent_id.reset(token)
