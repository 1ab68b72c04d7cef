"""Persistent state -- conversation context stores."""

from .context_store import (
    ContextStore,
    JsonContextStore,
    MemoryContextStore,
    ScopedContexts,
    create_context_store,
)

__all__ = [
    "ContextStore",
    "JsonContextStore",
    "MemoryContextStore",
    "ScopedContexts",
    "create_context_store",
]
