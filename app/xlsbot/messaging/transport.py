"""Bot Framework transport -- turns outbound messages into activities."""

from __future__ import annotations

import base64
import logging

from botbuilder.core import TurnContext
from botbuilder.schema import (
    ActionTypes,
    Activity,
    ActivityTypes,
    Attachment,
    CardAction,
    HeroCard,
    SuggestedActions,
)

from ..dispatch.models import FileAttachment, LinkCard, MarkdownText, Message, PlainText, QuickReplyMenu
from ..media.classify import extension_for, mime_for
from .formatting import strip_markdown

logger = logging.getLogger(__name__)

HERO_CARD_CONTENT_TYPE = "application/vnd.microsoft.card.hero"

# Channels that render Bot Framework markdown poorly get plain text instead.
PLAIN_TEXT_CHANNELS = frozenset({"telegram", "sms"})


def message_to_activity(message: Message, *, plain_text: bool = False) -> Activity:
    if isinstance(message, PlainText):
        return Activity(type=ActivityTypes.message, text=message.text, text_format="plain")

    if isinstance(message, MarkdownText):
        if plain_text:
            fallback = message.fallback_text or strip_markdown(message.markdown)
            return Activity(type=ActivityTypes.message, text=fallback, text_format="plain")
        return Activity(type=ActivityTypes.message, text=message.markdown, text_format="markdown")

    if isinstance(message, FileAttachment):
        return Activity(type=ActivityTypes.message, attachments=[file_attachment(message)])

    if isinstance(message, LinkCard):
        return Activity(type=ActivityTypes.message, attachments=[link_card_attachment(message)])

    if isinstance(message, QuickReplyMenu):
        actions = [
            CardAction(type=ActionTypes.im_back, title=option, value=option)
            for option in message.options
        ]
        return Activity(
            type=ActivityTypes.message,
            text=message.prompt,
            text_format="plain",
            suggested_actions=SuggestedActions(actions=actions),
        )

    raise TypeError(f"Unsupported message type: {type(message).__name__}")


def file_attachment(message: FileAttachment) -> Attachment:
    content_type = message.content_type or mime_for(
        extension_for(name=message.filename, url=message.url or "")
    )
    if message.url is not None:
        return Attachment(name=message.filename, content_type=content_type, content_url=message.url)
    encoded = base64.b64encode(message.data or b"").decode("ascii")
    return Attachment(
        name=message.filename,
        content_type=content_type,
        content_url=f"data:{content_type};base64,{encoded}",
    )


def link_card_attachment(card: LinkCard) -> Attachment:
    title = card.title or card.url
    hero = HeroCard(
        title=title,
        buttons=[CardAction(type=ActionTypes.open_url, title=title, value=card.url)],
    )
    return Attachment(content_type=HERO_CARD_CONTENT_TYPE, content=hero)


class TurnContextSender:
    """Sends through the live turn of an inbound activity."""

    def __init__(self, turn_context: TurnContext) -> None:
        self._turn_context = turn_context
        channel = (turn_context.activity.channel_id or "").lower()
        self._plain_text = channel in PLAIN_TEXT_CHANNELS

    async def send(self, conversation_id: str, message: Message) -> None:
        conversation = self._turn_context.activity.conversation
        if conversation is not None and conversation.id and conversation.id != conversation_id:
            logger.warning(
                "[bot] send for %s routed through turn of %s",
                conversation_id, conversation.id,
            )
        await self._turn_context.send_activity(
            message_to_activity(message, plain_text=self._plain_text)
        )
