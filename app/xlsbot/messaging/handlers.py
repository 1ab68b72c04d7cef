"""Bot handlers and the trigger registry built from them.

The registry is built once at start-up and handed to the engine; handlers
never register triggers at runtime.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
from datetime import UTC, datetime
from pathlib import Path

from ..dispatch.engine import DispatchContext
from ..dispatch.errors import FetchError
from ..dispatch.models import (
    Event,
    FileAttachment,
    LinkCard,
    MarkdownText,
    QuickReplyMenu,
    SpecialForm,
    TriggerSpec,
    keyword,
    regex,
    special,
)
from ..dispatch.modes import expect_spreadsheet
from ..dispatch.uploads import handle_upload
from ..util.async_helpers import run_sync
from .formatting import fill_template, snippet

logger = logging.getLogger(__name__)

GREETING_WORDS = ("hi", "hello", "hey", "yo", "watsup", "hola")
CHIP_OPTIONS = ("hey", "ping", "$", "pong", "custom chip")
CONVERT_PROMPTS = (
    "Ok, I'm waiting for your xlsx file",
    "Sure-- just upload your *.xlsx file",
    "Upload an *.xlsx",
)
GREETING_VARIANTS = ("Hey!", "Hello!!", "Hiya!")
NAME_TEMPLATES = ("Hey how are you $[name]?", "$[name]! How's it going?", "$[name]")
CELEBRATE_URL = "https://www.youtube.com/watch?v=3GwjfUFyY6M"
USER_DATA_KEY = "userData"


class BotHandlers:
    """Built-in conversational handlers."""

    def __init__(
        self,
        *,
        sample_file_url: str = "",
        sample_file_path: str = "",
        demo_data_url: str = "",
    ) -> None:
        self._sample_file_url = sample_file_url
        self._demo_data_url = demo_data_url
        self._sample_file_path = Path(sample_file_path) if sample_file_path else None

    def triggers(self) -> tuple[TriggerSpec, ...]:
        return (
            keyword(*GREETING_WORDS, handler=self._on_greeting,
                    help_text="A handler that greets the user"),
            keyword("sendfile", "send pdf", handler=self._on_send_file,
                    help_text="Returns a file by link and, when configured, from local disk"),
            keyword("ping", "pong", handler=self._on_ping_pong,
                    help_text="Says ping when the user says pong and vice versa"),
            special(SpecialForm.FORM_SUBMISSION, handler=self._on_form_submission,
                    help_text="Fires when a user submits a card form"),
            regex(r"convert", flags=re.IGNORECASE, key="convert", handler=self._on_convert,
                  help_text='Any message containing "convert" primes the bot for an *.xlsx upload'),
            special(SpecialForm.FILE_UPLOAD, handler=handle_upload,
                    help_text="Fires on file upload: json/txt/csv become snippets, "
                              "*.xlsx becomes an HTML preview after a convert request"),
            keyword("debug", handler=self._on_debug,
                    help_text="Shows active contexts"),
            keyword("$", "kitchensink", "$uperpowers", "$uperpower", "$superpower",
                    handler=self._on_superpowers, help_text="A tour of contexts and reply helpers"),
            keyword("chips", handler=self._on_chips,
                    help_text="Returns a sample list of quick-reply chips"),
            keyword("custom chip", handler=self._on_custom_chip,
                    help_text="Echoes the tapped chip event and shows the chips again"),
            keyword("help", handler=self._on_help,
                    help_text="Lists everything this bot responds to"),
        )

    async def _on_greeting(self, event: Event, ctx: DispatchContext) -> None:
        await ctx.reply(f"Heya how's it going {event.person_display_name}?")
        await ctx.retrigger("chips")

    async def _on_send_file(self, event: Event, ctx: DispatchContext) -> None:
        if self._sample_file_url:
            await ctx.reply(FileAttachment(filename="sample.pdf", url=self._sample_file_url))
        path = self._sample_file_path
        if path is not None and path.is_file():
            data = await run_sync(path.read_bytes)
            await ctx.reply(FileAttachment(filename=path.name, data=data))
        elif path is not None:
            logger.warning("Sample file %s not found", path)

    async def _on_ping_pong(self, event: Event, ctx: DispatchContext) -> None:
        await ctx.reply("pong" if event.text.strip().lower() == "ping" else "ping")

    async def _on_form_submission(self, event: Event, ctx: DispatchContext) -> None:
        payload = json.dumps(dict(event.form_submission or {}), default=str)
        await ctx.reply(f"Submission received! You sent us {payload}")

    async def _on_convert(self, event: Event, ctx: DispatchContext) -> None:
        await ctx.reply_random(CONVERT_PROMPTS)
        await expect_spreadsheet(ctx.contexts)

    async def _on_debug(self, event: Event, ctx: DispatchContext) -> None:
        contexts = await ctx.contexts.list_active()
        if contexts:
            await ctx.reply("Active contexts: " + ", ".join(f'"{name}"' for name in contexts))
        else:
            await ctx.reply("No active contexts")

    async def _on_superpowers(self, event: Event, ctx: DispatchContext) -> None:
        contexts = ctx.contexts
        await contexts.save("mycontext1")
        await contexts.save("mycontext2", {"data": datetime.now(UTC).isoformat()})

        mycontext2 = await contexts.get("mycontext2")
        logger.debug("mycontext2 payload: %s", mycontext2.payload if mycontext2 else None)

        await ctx.reply(f"Contexts: {json.dumps(await contexts.list_active())}")

        logger.debug("mycontext1 active: %s", await contexts.is_active("mycontext1"))
        await contexts.delete("mycontext1")
        logger.debug("mycontext1 active after delete: %s", await contexts.is_active("mycontext1"))

        await ctx.reply_random(GREETING_VARIANTS)
        values = {"name": event.person_display_name or "friend"}
        await ctx.reply_random([fill_template(u, values) for u in NAME_TEMPLATES])
        await ctx.reply(LinkCard(url=CELEBRATE_URL, title="Go Celebrate"))

        data = {"a": 1, "b": 2, "c": 3, "d": 4}
        await ctx.reply(MarkdownText(f"**Here's some JSON, you'll love it**\n{snippet(data)}"))

        if event.person_id:
            await ctx.save_data(USER_DATA_KEY, {
                "special_value": secrets.token_urlsafe(8),
                "user_id": event.person_id,
            })
            stored = await ctx.get_data(USER_DATA_KEY)
            if stored:
                logger.debug("special value %s for %s", stored["special_value"], stored["user_id"])
                await ctx.delete_data(USER_DATA_KEY)

        if self._demo_data_url:
            try:
                payload = await ctx.fetch_json(self._demo_data_url)
            except FetchError as exc:
                logger.warning("Demo data fetch failed: %s", exc)
                await ctx.reply("Couldn't reach the demo data service right now.")
            else:
                await ctx.reply(MarkdownText(snippet(payload)))

        if self._sample_file_url:
            await ctx.reply(FileAttachment(filename="sample.pdf", url=self._sample_file_url))

    async def _on_chips(self, event: Event, ctx: DispatchContext) -> None:
        await ctx.reply(QuickReplyMenu(options=CHIP_OPTIONS, prompt="Pick an option below"))

    async def _on_custom_chip(self, event: Event, ctx: DispatchContext) -> None:
        await ctx.reply(MarkdownText(
            f"**The 'custom chip' was tapped**\n{snippet(event.to_dict())}"
        ))
        await ctx.retrigger("chips")

    async def _on_help(self, event: Event, ctx: DispatchContext) -> None:
        lines = ["**Things I respond to**", ""]
        for pattern, help_text in ctx.help_entries():
            lines.append(f"- `{pattern}`: {help_text}" if help_text else f"- `{pattern}`")
        await ctx.reply(MarkdownText("\n".join(lines)))


def build_registry(
    *,
    sample_file_url: str = "",
    sample_file_path: str = "",
    demo_data_url: str = "",
) -> tuple[TriggerSpec, ...]:
    return BotHandlers(
        sample_file_url=sample_file_url,
        sample_file_path=sample_file_path,
        demo_data_url=demo_data_url,
    ).triggers()
