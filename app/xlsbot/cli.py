"""Interactive console -- talk to the bot without a Bot Framework channel."""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape

from .config.settings import Settings, cfg
from .dispatch.engine import DispatchEngine
from .dispatch.factory import create_engine
from .dispatch.models import (
    AttachmentRef,
    Event,
    FileAttachment,
    LinkCard,
    MarkdownText,
    Message,
    PlainText,
    QuickReplyMenu,
)

console = Console()

CONSOLE_CONVERSATION_ID = "console"
CONSOLE_PERSON_ID = "console-user"

_UPLOAD_RE = re.compile(r"^/upload(?:\s+(?P<path>.*))?$", re.IGNORECASE | re.DOTALL)


class ConsoleSender:
    """Renders outbound messages on the terminal."""

    def __init__(self, out: Console, download_dir: Path) -> None:
        self._out = out
        self._download_dir = download_dir

    async def send(self, conversation_id: str, message: Message) -> None:
        if isinstance(message, PlainText):
            self._out.print(f"[bold cyan]bot >[/bold cyan] {escape(message.text)}", highlight=False)
        elif isinstance(message, MarkdownText):
            self._out.print("[bold cyan]bot >[/bold cyan]")
            self._out.print(Markdown(message.markdown))
        elif isinstance(message, QuickReplyMenu):
            if message.prompt:
                self._out.print(f"[bold cyan]bot >[/bold cyan] {escape(message.prompt)}")
            self._out.print("  " + "  ".join(f"[reverse] {escape(o)} [/reverse]" for o in message.options))
        elif isinstance(message, FileAttachment):
            self._save_file(message)
        elif isinstance(message, LinkCard):
            title = escape(message.title or message.url)
            self._out.print(f"[bold cyan]bot >[/bold cyan] {title}: {escape(message.url)}", highlight=False)
        else:
            raise TypeError(f"Unsupported message type: {type(message).__name__}")

    def _save_file(self, message: FileAttachment) -> None:
        if message.url is not None:
            self._out.print(f"[bold cyan]bot >[/bold cyan] file {message.filename}: {message.url}")
            return
        self._download_dir.mkdir(parents=True, exist_ok=True)
        target = self._download_dir / message.filename
        target.write_bytes(message.data or b"")
        self._out.print(f"[bold cyan]bot >[/bold cyan] file saved to [underline]{target}[/underline]")


def build_event(text: str, *, display_name: str) -> Event | None:
    """Turn a console line into an Event; ``/upload <path>`` attaches a local file."""
    refs: tuple[AttachmentRef, ...] = ()
    upload = _UPLOAD_RE.match(text)
    if upload:
        raw = (upload.group("path") or "").strip()
        if not raw:
            return None
        path = Path(raw).expanduser().resolve()
        refs = (AttachmentRef(url=path.as_uri(), name=path.name),)
        text = ""
    return Event(
        text=text,
        person_id=CONSOLE_PERSON_ID,
        person_display_name=display_name,
        conversation_id=CONSOLE_CONVERSATION_ID,
        attachment_refs=refs,
    )


def submit_line(engine: DispatchEngine, text: str, *, display_name: str) -> asyncio.Task | None:
    """Dispatch one console line as its own task; ``None`` when the line is unusable."""
    event = build_event(text, display_name=display_name)
    if event is None:
        return None
    task = engine.submit(event)
    task.add_done_callback(_report_failure)
    return task


async def _main(settings: Settings) -> None:
    settings.ensure_dirs()
    console.print(
        "[bold green]xlsbot[/bold green] console\n"
        "Type [bold]help[/bold] to list triggers, [bold]/upload <path>[/bold] to send a file, "
        "[bold]/quit[/bold] to exit.\n"
    )

    engine = create_engine(settings, sender=ConsoleSender(console, settings.data_dir / "downloads"))
    prompt_session: PromptSession[str] = PromptSession(history=FileHistory(str(settings.cli_history_path)))
    display_name = Path.home().name or "friend"

    try:
        while True:
            try:
                user_input = await asyncio.to_thread(prompt_session.prompt, HTML("<b>you &gt;</b> "))
            except (EOFError, KeyboardInterrupt):
                break

            text = user_input.strip()
            if not text:
                continue
            if text.lower() in ("/quit", "/exit"):
                break

            if submit_line(engine, text, display_name=display_name) is None:
                console.print("[dim]usage: /upload <path>[/dim]")
    finally:
        await engine.drain()
        if engine.fetcher is not None:
            await engine.fetcher.close()
        console.print("[dim]Goodbye.[/dim]")


def _report_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        console.print(f"[red]error:[/red] {escape(str(exc))}")


def main() -> None:
    logging.basicConfig(
        level=cfg.log_level,
        format="%(asctime)s  %(name)s  %(levelname)s  %(message)s",
    )
    try:
        asyncio.run(_main(cfg))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
