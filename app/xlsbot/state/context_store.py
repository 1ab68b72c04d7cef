"""Conversation context stores.

A context is a named flag scoped to one conversation, optionally carrying a
JSON-serializable payload. Existence of the entry is what handlers test;
entries live until deleted.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from ..dispatch.errors import ContextStoreError
from ..dispatch.models import ContextEntry
from ..util.async_helpers import run_sync
from ._json_store import JsonStore

logger = logging.getLogger(__name__)


class ContextStore(Protocol):
    async def get(self, conversation_id: str, name: str) -> ContextEntry | None: ...

    async def save(self, conversation_id: str, name: str, payload: Any = None) -> ContextEntry: ...

    async def delete(self, conversation_id: str, name: str) -> None: ...

    async def list_active(self, conversation_id: str) -> list[str]: ...


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _entry_to_dict(entry: ContextEntry) -> dict[str, Any]:
    return {"payload": entry.payload, "created_at": entry.created_at}


def _entry_from_dict(name: str, raw: Any) -> ContextEntry:
    if not isinstance(raw, dict):
        return ContextEntry(name=name)
    return ContextEntry(name=name, payload=raw.get("payload"), created_at=raw.get("created_at", ""))


class MemoryContextStore:
    """Process-local store; contexts vanish on restart."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, ContextEntry]] = {}

    async def get(self, conversation_id: str, name: str) -> ContextEntry | None:
        return self._data.get(conversation_id, {}).get(name)

    async def save(self, conversation_id: str, name: str, payload: Any = None) -> ContextEntry:
        entries = self._data.setdefault(conversation_id, {})
        existing = entries.get(name)
        entry = ContextEntry(
            name=name,
            payload=payload,
            created_at=existing.created_at if existing else _now(),
        )
        entries[name] = entry
        return entry

    async def delete(self, conversation_id: str, name: str) -> None:
        entries = self._data.get(conversation_id)
        if not entries:
            return
        entries.pop(name, None)
        if not entries:
            del self._data[conversation_id]

    async def list_active(self, conversation_id: str) -> list[str]:
        return list(self._data.get(conversation_id, {}))


class JsonContextStore:
    """JSON-file-backed store: ``{conversation_id: {name: {payload, created_at}}}``.

    File I/O runs in the default executor. Each operation is a locked
    load-modify-save so writes to different keys never clobber each other.
    """

    def __init__(self, path: Path) -> None:
        self._store = JsonStore(path, default={})
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._store.path

    async def get(self, conversation_id: str, name: str) -> ContextEntry | None:
        return await self._run(self._get_sync, conversation_id, name)

    async def save(self, conversation_id: str, name: str, payload: Any = None) -> ContextEntry:
        return await self._run(self._save_sync, conversation_id, name, payload)

    async def delete(self, conversation_id: str, name: str) -> None:
        await self._run(self._delete_sync, conversation_id, name)

    async def list_active(self, conversation_id: str) -> list[str]:
        return await self._run(self._list_sync, conversation_id)

    async def _run(self, fn, *args: Any) -> Any:
        try:
            return await run_sync(fn, *args)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("[contexts] %s failed on %s: %s", fn.__name__, self.path, exc)
            raise ContextStoreError(f"Context store unavailable: {exc}") from exc

    def _load(self) -> dict[str, Any]:
        data = self._store.load()
        return data if isinstance(data, dict) else {}

    def _get_sync(self, conversation_id: str, name: str) -> ContextEntry | None:
        with self._lock:
            entries = self._load().get(conversation_id) or {}
        if name not in entries:
            return None
        return _entry_from_dict(name, entries[name])

    def _save_sync(self, conversation_id: str, name: str, payload: Any) -> ContextEntry:
        with self._lock:
            data = self._load()
            entries = data.setdefault(conversation_id, {})
            existing = entries.get(name)
            created_at = existing.get("created_at", "") if isinstance(existing, dict) else ""
            entry = ContextEntry(name=name, payload=payload, created_at=created_at or _now())
            entries[name] = _entry_to_dict(entry)
            self._store.save(data)
        return entry

    def _delete_sync(self, conversation_id: str, name: str) -> None:
        with self._lock:
            data = self._load()
            entries = data.get(conversation_id)
            if not entries or name not in entries:
                return
            del entries[name]
            if not entries:
                del data[conversation_id]
            self._store.save(data)

    def _list_sync(self, conversation_id: str) -> list[str]:
        with self._lock:
            return list(self._load().get(conversation_id) or {})


def person_scope(person_id: str) -> str:
    """Store partition for data that follows a person across conversations."""
    return f"person:{person_id}"


class ScopedContexts:
    """A context store bound to one conversation, handed to handlers."""

    def __init__(self, store: ContextStore, conversation_id: str) -> None:
        self._store = store
        self._conversation_id = conversation_id

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    async def get(self, name: str) -> ContextEntry | None:
        return await self._store.get(self._conversation_id, name)

    async def save(self, name: str, payload: Any = None) -> ContextEntry:
        logger.debug("[contexts] save %s/%s", self._conversation_id, name)
        return await self._store.save(self._conversation_id, name, payload)

    async def delete(self, name: str) -> None:
        logger.debug("[contexts] delete %s/%s", self._conversation_id, name)
        await self._store.delete(self._conversation_id, name)

    async def list_active(self) -> list[str]:
        return await self._store.list_active(self._conversation_id)

    async def is_active(self, name: str) -> bool:
        return await self.get(name) is not None


def create_context_store(kind: str, path: Path | None = None) -> ContextStore:
    if kind == "memory":
        return MemoryContextStore()
    if kind == "json":
        if path is None:
            raise ValueError("json context store needs a path")
        return JsonContextStore(path)
    raise ValueError(f"Unknown context store kind: {kind!r}")
