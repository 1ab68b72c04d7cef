"""Bot Framework ActivityHandler -- turns activities into dispatch events."""

from __future__ import annotations

import logging
from typing import Any

from botbuilder.core import ActivityHandler, TurnContext
from botbuilder.schema import Activity, ChannelAccount

from ..dispatch.engine import DispatchEngine
from ..dispatch.models import AttachmentRef, Event
from ..media.classify import mime_for
from .transport import TurnContextSender

logger = logging.getLogger(__name__)

TEAMS_FILE_DOWNLOAD = "application/vnd.microsoft.teams.file.download.info"
WELCOME_TEXT = "Hello! Say 'help' to see what I can do, or 'convert' to turn a spreadsheet into HTML."


class Bot(ActivityHandler):
    def __init__(self, engine: DispatchEngine) -> None:
        self._engine = engine

    async def on_message_activity(self, turn_context: TurnContext) -> None:
        event = activity_to_event(turn_context.activity)
        if event is None:
            return
        await self._engine.dispatch(event, TurnContextSender(turn_context))

    async def on_members_added_activity(
        self,
        members_added: list[ChannelAccount],
        turn_context: TurnContext,
    ) -> None:
        for member in members_added:
            if member.id != turn_context.activity.recipient.id:
                await turn_context.send_activity(WELCOME_TEXT)


def activity_to_event(activity: Activity) -> Event | None:
    """Build an Event from a message activity; ``None`` when there is nothing to route."""
    text = activity.text or ""
    if text and activity.entities and activity.recipient:
        text = TurnContext.remove_recipient_mention(activity) or ""

    refs = tuple(
        ref for att in (activity.attachments or [])
        if (ref := _attachment_ref(att)) is not None
    )
    form = activity.value if isinstance(activity.value, dict) else None

    if not text.strip() and not refs and form is None:
        return None

    sender = activity.from_property
    conversation = activity.conversation
    return Event(
        text=text.strip(),
        person_id=(sender.id if sender else "") or "",
        person_display_name=(sender.name if sender else "") or "",
        conversation_id=(conversation.id if conversation else "") or "",
        attachment_refs=refs,
        form_submission=form,
    )


def _attachment_ref(att: Any) -> AttachmentRef | None:
    content_type = att.content_type or ""
    if content_type == TEAMS_FILE_DOWNLOAD:
        content = att.content if isinstance(att.content, dict) else {}
        url = content.get("downloadUrl")
        if not url:
            return None
        file_type = content.get("fileType", "")
        return AttachmentRef(
            url=url,
            name=att.name or "",
            content_type=mime_for(file_type) if file_type else "",
        )
    # Cards and other Bot Framework payloads are not uploads.
    if content_type.startswith("application/vnd.microsoft"):
        return None
    if not att.content_url:
        logger.debug("[bot] attachment %s without content_url skipped", att.name)
        return None
    return AttachmentRef(url=att.content_url, name=att.name or "", content_type=content_type)
