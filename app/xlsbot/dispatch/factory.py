"""Engine assembly from settings -- shared by the server and console hosts."""

from __future__ import annotations

import logging

from ..config.settings import Settings
from ..media.fetch import AttachmentFetcher, TokenProvider
from ..messaging.handlers import build_registry
from ..state.context_store import ContextStore, create_context_store
from .engine import DispatchEngine
from .models import Sender

logger = logging.getLogger(__name__)


def create_store(settings: Settings) -> ContextStore:
    store = create_context_store(settings.context_store, settings.contexts_path)
    logger.info("Context store: %s", settings.context_store)
    return store


def create_fetcher(settings: Settings, token_provider: TokenProvider | None = None) -> AttachmentFetcher:
    return AttachmentFetcher(
        max_bytes=settings.max_attachment_bytes,
        timeout=settings.fetch_timeout_seconds,
        token_provider=token_provider,
    )


def create_engine(
    settings: Settings,
    *,
    sender: Sender | None = None,
    store: ContextStore | None = None,
    fetcher: AttachmentFetcher | None = None,
) -> DispatchEngine:
    registry = build_registry(
        sample_file_url=settings.sample_file_url,
        sample_file_path=settings.sample_file_path,
        demo_data_url=settings.demo_data_url,
    )
    return DispatchEngine(
        registry,
        store=store or create_store(settings),
        sender=sender,
        fetcher=fetcher or create_fetcher(settings),
        max_retrigger_depth=settings.max_retrigger_depth,
    )
