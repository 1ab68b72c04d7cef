"""Attachment pipeline -- classification, fetching, spreadsheet conversion."""

from .classify import ACCEPTED_SNIPPET_EXTENSIONS, EXTENSION_TO_MIME, classify, extension_for, mime_for

__all__ = [
    "ACCEPTED_SNIPPET_EXTENSIONS",
    "EXTENSION_TO_MIME",
    "classify",
    "extension_for",
    "mime_for",
]
