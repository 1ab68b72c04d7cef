"""Dispatch data model -- events, triggers, contexts, attachments, messages."""

from __future__ import annotations

import enum
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, Union

if TYPE_CHECKING:
    from .engine import DispatchContext


# -- inbound -----------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AttachmentRef:
    """Opaque reference to an uploaded file that has not been fetched yet."""

    url: str
    name: str = ""
    content_type: str = ""


@dataclass(frozen=True, slots=True)
class Event:
    text: str = ""
    person_id: str = ""
    person_display_name: str = ""
    conversation_id: str = ""
    attachment_refs: tuple[AttachmentRef, ...] = ()
    form_submission: Mapping[str, Any] | None = None

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachment_refs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "person_id": self.person_id,
            "person_display_name": self.person_display_name,
            "conversation_id": self.conversation_id,
            "attachment_refs": [
                {"url": r.url, "name": r.name, "content_type": r.content_type}
                for r in self.attachment_refs
            ],
            "form_submission": dict(self.form_submission) if self.form_submission is not None else None,
        }


@dataclass(frozen=True, slots=True)
class FetchedAttachment:
    data: bytes
    extension: str
    mime_type: str
    name: str = ""
    text: str | None = field(default=None, repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    def decoded(self) -> str:
        if self.text is not None:
            return self.text
        return self.data.decode("utf-8", errors="replace")


@dataclass(frozen=True, slots=True)
class ContextEntry:
    name: str
    payload: Any = None
    created_at: str = ""


# -- trigger patterns ----------------------------------------------------------


class SpecialForm(str, enum.Enum):
    """Reserved patterns that fire on event shape rather than text."""

    FILE_UPLOAD = "<@fileupload>"
    FORM_SUBMISSION = "<@submit>"


def normalize_text(text: str) -> str:
    return text.strip().casefold()


@dataclass(frozen=True, slots=True)
class Keywords:
    """Literal keyword set; a normalized text equal to any member matches."""

    words: frozenset[str]

    @classmethod
    def of(cls, *words: str) -> Keywords:
        normalized = frozenset(normalize_text(w) for w in words if w.strip())
        if not normalized:
            raise ValueError("Keywords pattern needs at least one non-blank word")
        return cls(normalized)


@dataclass(frozen=True, slots=True)
class Regex:
    """Regular expression tested against the raw, unnormalized text."""

    pattern: re.Pattern[str]

    @classmethod
    def compile(cls, source: str, flags: int = 0) -> Regex:
        return cls(re.compile(source, flags))


@dataclass(frozen=True, slots=True)
class Special:
    form: SpecialForm


Pattern = Union[Keywords, Regex, Special]

Handler = Callable[["Event", "DispatchContext"], "Awaitable[None] | None"]


@dataclass(frozen=True, slots=True)
class TriggerSpec:
    pattern: Pattern
    handler: Handler
    help_text: str = ""
    key: str = ""

    def __post_init__(self) -> None:
        if not self.key:
            object.__setattr__(self, "key", default_key(self.pattern))


def default_key(pattern: Pattern) -> str:
    """Trigger identity used by re-trigger when none is given explicitly."""
    if isinstance(pattern, Keywords):
        return min(pattern.words)
    if isinstance(pattern, Regex):
        return pattern.pattern.pattern
    if isinstance(pattern, Special):
        return pattern.form.value
    raise TypeError(f"Unsupported trigger pattern: {pattern!r}")


def keyword(*words: str, handler: Handler, help_text: str = "", key: str = "") -> TriggerSpec:
    return TriggerSpec(Keywords.of(*words), handler, help_text, key or normalize_text(words[0]))


def regex(source: str, *, handler: Handler, flags: int = 0, help_text: str = "", key: str = "") -> TriggerSpec:
    return TriggerSpec(Regex.compile(source, flags), handler, help_text, key)


def special(form: SpecialForm, *, handler: Handler, help_text: str = "") -> TriggerSpec:
    return TriggerSpec(Special(form), handler, help_text)


# -- state machine -------------------------------------------------------------


class ConversationMode(enum.Enum):
    IDLE = "idle"
    AWAITING_SPREADSHEET = "awaiting_spreadsheet"


class Branch(enum.Enum):
    CONVERT_TO_PREVIEW = "convert_to_preview"
    REJECT_WRONG_TYPE = "reject_wrong_type"
    RENDER_AS_SNIPPET = "render_as_snippet"
    SUGGEST_CONVERSION = "suggest_conversion"
    UNSUPPORTED_TYPE_NOTICE = "unsupported_type_notice"


# -- outbound ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PlainText:
    text: str


@dataclass(frozen=True, slots=True)
class MarkdownText:
    markdown: str
    fallback_text: str = ""


@dataclass(frozen=True, slots=True)
class FileAttachment:
    filename: str
    data: bytes | None = field(default=None, repr=False)
    url: str | None = None
    content_type: str = ""

    def __post_init__(self) -> None:
        if (self.data is None) == (self.url is None):
            raise ValueError("FileAttachment needs exactly one of data or url")


@dataclass(frozen=True, slots=True)
class LinkCard:
    """A clickable card that opens *url*."""

    url: str
    title: str = ""


@dataclass(frozen=True, slots=True)
class QuickReplyMenu:
    options: tuple[str, ...]
    prompt: str = ""


Message = Union[PlainText, MarkdownText, FileAttachment, LinkCard, QuickReplyMenu]


class Sender(Protocol):
    """Outbound transport capability: deliver *message* to a conversation."""

    async def send(self, conversation_id: str, message: Message) -> None: ...
