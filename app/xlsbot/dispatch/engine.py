"""Dispatch engine -- routes events to registered handlers.

The engine owns no per-conversation state of its own: anything that must
outlive a turn lives in the context store. Handlers get a
:class:`DispatchContext` that bundles the conversation-scoped store, a reply
channel and the re-trigger capability.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import random
from collections.abc import Sequence
from typing import Any

from ..media.convert import SpreadsheetConverter
from ..media.fetch import AttachmentFetcher
from ..state.context_store import ContextStore, ScopedContexts, person_scope
from ..util.async_helpers import spawn
from .errors import ContextStoreError, FetchError, RetriggerLimitError, UnknownTriggerError
from .matcher import describe, resolve
from .models import AttachmentRef, Event, FetchedAttachment, Message, PlainText, Sender, TriggerSpec

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIGGER_DEPTH = 5


class DispatchContext:
    """Per-invocation handle passed to a handler alongside the event."""

    def __init__(self, engine: DispatchEngine, event: Event, sender: Sender, depth: int) -> None:
        self._engine = engine
        self._event = event
        self._sender = sender
        self._depth = depth
        self.contexts = ScopedContexts(engine.store, event.conversation_id)

    @property
    def event(self) -> Event:
        return self._event

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def converter(self) -> SpreadsheetConverter:
        return self._engine.converter

    async def reply(self, message: Message | str) -> None:
        if isinstance(message, str):
            message = PlainText(message)
        await self._sender.send(self._event.conversation_id, message)

    async def reply_random(self, options: Sequence[str]) -> str:
        choice = self._engine.choose(options)
        await self.reply(choice)
        return choice

    async def fetch_attachment(
        self,
        ref: AttachmentRef,
        *,
        response_type: str = "arraybuffer",
    ) -> FetchedAttachment:
        fetcher = self._engine.fetcher
        if fetcher is None:
            raise RuntimeError("No attachment fetcher configured")
        return await fetcher.fetch(ref, response_type=response_type)

    async def fetch_json(self, url: str) -> Any:
        """GET *url* through the attachment fetcher and decode the body as JSON."""
        fetched = await self.fetch_attachment(AttachmentRef(url=url), response_type="text")
        try:
            return json.loads(fetched.decoded())
        except json.JSONDecodeError as exc:
            raise FetchError(f"Response from {url[:60]} is not JSON: {exc}", url=url) from exc

    # -- per-person data -----------------------------------------------------

    def _person_data(self) -> ScopedContexts:
        if not self._event.person_id:
            raise ValueError("Event has no person_id; per-person data is unavailable")
        return ScopedContexts(self._engine.store, person_scope(self._event.person_id))

    async def save_data(self, key: str, value: Any) -> None:
        await self._person_data().save(key, value)

    async def get_data(self, key: str) -> Any:
        """Stored value for *key*, or ``None`` when nothing was saved."""
        entry = await self._person_data().get(key)
        return entry.payload if entry is not None else None

    async def delete_data(self, key: str) -> None:
        await self._person_data().delete(key)

    async def retrigger(self, key: str, event: Event | None = None) -> None:
        """Run the handler registered under *key* inline, skipping matching."""
        await self._engine.run_trigger(key, event or self._event, self._sender, self._depth + 1)

    def help_entries(self) -> list[tuple[str, str]]:
        return [(describe(spec), spec.help_text) for spec in self._engine.registry]


class DispatchEngine:
    def __init__(
        self,
        registry: Sequence[TriggerSpec],
        *,
        store: ContextStore,
        sender: Sender | None = None,
        fetcher: AttachmentFetcher | None = None,
        converter: SpreadsheetConverter | None = None,
        max_retrigger_depth: int = DEFAULT_MAX_RETRIGGER_DEPTH,
        rng: random.Random | None = None,
    ) -> None:
        self._registry: tuple[TriggerSpec, ...] = tuple(registry)
        self._by_key: dict[str, TriggerSpec] = {}
        for spec in self._registry:
            if spec.key in self._by_key:
                raise ValueError(f"Duplicate trigger key: {spec.key!r}")
            self._by_key[spec.key] = spec
        self.store = store
        self.fetcher = fetcher
        self.converter = converter or SpreadsheetConverter()
        self._sender = sender
        self._max_depth = max_retrigger_depth
        self._rng = rng or random.Random()
        self._tasks: set[asyncio.Task] = set()

    @property
    def registry(self) -> tuple[TriggerSpec, ...]:
        return self._registry

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def choose(self, options: Sequence[str]) -> str:
        return self._rng.choice(list(options))

    async def dispatch(self, event: Event, sender: Sender | None = None) -> None:
        specs = resolve(event, self._registry)
        if not specs:
            logger.debug("[dispatch] no trigger matched in %s", event.conversation_id)
            return

        target = sender or self._sender
        if target is None:
            raise RuntimeError("No sender configured for dispatch")

        for spec in specs:
            try:
                await self._invoke(spec, event, target, depth=0)
            except ContextStoreError as exc:
                logger.error("[dispatch] %s aborted, context store failed: %s", spec.key, exc)
                raise
            except Exception:
                logger.exception("[dispatch] handler %s failed in %s", spec.key, event.conversation_id)
                raise

    def submit(self, event: Event, sender: Sender | None = None) -> asyncio.Task:
        """Dispatch *event* as an independent task; failures are only logged."""
        return spawn(
            self.dispatch(event, sender),
            self._tasks,
            name=f"dispatch:{event.conversation_id}",
        )

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run_trigger(self, key: str, event: Event, sender: Sender, depth: int) -> None:
        spec = self._by_key.get(key)
        if spec is None:
            raise UnknownTriggerError(key)
        if depth > self._max_depth:
            logger.warning("[dispatch] re-trigger of %s stopped at depth %d", key, depth)
            raise RetriggerLimitError(key, self._max_depth)
        await self._invoke(spec, event, sender, depth)

    async def _invoke(self, spec: TriggerSpec, event: Event, sender: Sender, depth: int) -> None:
        logger.info(
            "[dispatch] %s -> %s (depth=%d)",
            event.conversation_id or "?", spec.key, depth,
        )
        ctx = DispatchContext(self, event, sender, depth)
        result = spec.handler(event, ctx)
        if inspect.isawaitable(result):
            await result
