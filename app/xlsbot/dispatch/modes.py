"""Conversation mode derived from which context entries exist."""

from __future__ import annotations

from ..state.context_store import ScopedContexts
from .models import ConversationMode

EXPECT_SPREADSHEET = "expectXlxsfile"


async def current_mode(contexts: ScopedContexts) -> ConversationMode:
    if await contexts.is_active(EXPECT_SPREADSHEET):
        return ConversationMode.AWAITING_SPREADSHEET
    return ConversationMode.IDLE


async def expect_spreadsheet(contexts: ScopedContexts) -> None:
    """Enter AWAITING_SPREADSHEET; saving again keeps the single entry."""
    await contexts.save(EXPECT_SPREADSHEET)


async def consume_spreadsheet_expectation(contexts: ScopedContexts) -> None:
    """Return to IDLE. Deleting a missing entry is a no-op."""
    await contexts.delete(EXPECT_SPREADSHEET)
