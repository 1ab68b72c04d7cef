"""Upload workflow -- fetch, classify and answer a file upload.

When the conversation is awaiting a spreadsheet the expectation is consumed
by this upload whatever happens next: the entry is deleted, and the delete
awaited, before the handler returns.
"""

from __future__ import annotations

import logging

from ..media.classify import ACCEPTED_SNIPPET_EXTENSIONS, SPREADSHEET_EXTENSION, classify
from ..media.convert import PREVIEW_FILENAME
from ..messaging.formatting import html_snippet, text_snippet
from .engine import DispatchContext
from .errors import FetchError, ParseError
from .models import Branch, ConversationMode, Event, FetchedAttachment, FileAttachment, MarkdownText
from .modes import consume_spreadsheet_expectation, current_mode

logger = logging.getLogger(__name__)

FETCH_FAILED_MSG = "Sorry, I couldn't retrieve your file. Please try uploading it again."
WRONG_TYPE_MSG = "Expected a file in *.xlsx format"
INVALID_SPREADSHEET_MSG = "Expected a valid *.xlsx file -- I couldn't read that spreadsheet."

CONVERSION_SUGGESTIONS: tuple[str, ...] = (
    "If you want to convert that spreadsheet to an HTML preview say 'convert to html' & attach the file",
    "If you want that spreadsheet converted to html, say 'convert this file' & attach it to your message",
    "To start the conversion process (xlsx to html), say 'convert this spreadsheet' and attach the file",
    'Say something like "convert this to html" and attach the spreadsheet file to have it converted',
)


def unsupported_type_message(fetched: FetchedAttachment) -> str:
    accepted = ", ".join(f"*.{ext}" for ext in (*ACCEPTED_SNIPPET_EXTENSIONS, SPREADSHEET_EXTENSION))
    kind = f"*.{fetched.extension}" if fetched.extension else "that kind of"
    return (
        f"Sorry, somebody needs to add support for {kind} ({fetched.mime_type}) files. "
        f"I can handle {accepted}."
    )


async def handle_upload(event: Event, ctx: DispatchContext) -> None:
    if not event.attachment_refs:
        return
    # Only the first file of a multi-file upload is processed.
    ref = event.attachment_refs[0]
    awaiting = await current_mode(ctx.contexts) is ConversationMode.AWAITING_SPREADSHEET
    try:
        try:
            fetched = await ctx.fetch_attachment(
                ref,
                response_type="arraybuffer" if awaiting else "text",
            )
        except FetchError as exc:
            logger.warning("[upload] fetch failed in %s: %s", event.conversation_id, exc)
            await ctx.reply(FETCH_FAILED_MSG)
            return

        branch = classify(fetched, awaiting)
        logger.info("[upload] %s (%s) -> %s", fetched.name or ref.url[:40], fetched.extension, branch.value)
        await _run_branch(branch, fetched, ctx)
    finally:
        if awaiting:
            await consume_spreadsheet_expectation(ctx.contexts)


async def _run_branch(branch: Branch, fetched: FetchedAttachment, ctx: DispatchContext) -> None:
    if branch is Branch.CONVERT_TO_PREVIEW:
        try:
            result = await ctx.converter.convert(fetched.data)
        except ParseError as exc:
            logger.info("[upload] not a readable workbook: %s", exc)
            await ctx.reply(INVALID_SPREADSHEET_MSG)
            return
        await ctx.reply(MarkdownText(html_snippet(result.preview_html), fallback_text=result.preview_html))
        await ctx.reply(FileAttachment(
            filename=PREVIEW_FILENAME,
            data=result.downloadable_html.encode("utf-8"),
            content_type="text/html",
        ))
    elif branch is Branch.REJECT_WRONG_TYPE:
        await ctx.reply(WRONG_TYPE_MSG)
    elif branch is Branch.RENDER_AS_SNIPPET:
        await ctx.reply(MarkdownText(text_snippet(fetched.decoded(), fetched.extension)))
    elif branch is Branch.SUGGEST_CONVERSION:
        await ctx.reply_random(CONVERSION_SUGGESTIONS)
    else:
        await ctx.reply(unsupported_type_message(fetched))
