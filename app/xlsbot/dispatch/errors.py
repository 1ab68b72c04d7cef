"""Dispatch error taxonomy.

``FetchError`` and ``ParseError`` are recovered by handlers and turned into
user-facing notices. ``ContextStoreError`` is the one failure allowed to
abort the current dispatch.
"""

from __future__ import annotations


class DispatchError(Exception):
    """Base class for errors raised by the dispatch core."""


class FetchError(DispatchError):
    """Attachment bytes could not be retrieved."""

    def __init__(self, message: str, *, url: str = "", status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class ParseError(DispatchError):
    """Bytes were retrieved but are not a readable spreadsheet."""


class ContextStoreError(DispatchError):
    """The context store could not be read or written."""


class UnknownTriggerError(DispatchError, LookupError):
    def __init__(self, key: str) -> None:
        super().__init__(f"No trigger registered under {key!r}")
        self.key = key


class RetriggerLimitError(DispatchError):
    def __init__(self, key: str, depth: int) -> None:
        super().__init__(f"Re-trigger of {key!r} exceeds depth limit ({depth})")
        self.key = key
        self.depth = depth
