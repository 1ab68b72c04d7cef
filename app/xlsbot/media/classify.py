"""Attachment classification and MIME-type registry."""

from __future__ import annotations

from pathlib import PurePosixPath
from urllib.parse import unquote, urlparse

from ..dispatch.models import Branch, FetchedAttachment

EXTENSION_TO_MIME: dict[str, str] = {
    "json": "application/json",
    "txt": "text/plain",
    "csv": "text/csv",
    "html": "text/html",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "xls": "application/vnd.ms-excel",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "pdf": "application/pdf",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "bmp": "image/bmp",
}

_MIME_TO_EXTENSION: dict[str, str] = {}
for _ext, _mime in EXTENSION_TO_MIME.items():
    _MIME_TO_EXTENSION.setdefault(_mime, _ext)

SPREADSHEET_EXTENSION = "xlsx"
ACCEPTED_SNIPPET_EXTENSIONS: tuple[str, ...] = ("json", "txt", "csv")


def classify(fetched: FetchedAttachment, context_active: bool) -> Branch:
    """Pick the processing branch for an uploaded file. Pure; no side effects."""
    extension = fetched.extension.lower()
    if context_active:
        if extension == SPREADSHEET_EXTENSION:
            return Branch.CONVERT_TO_PREVIEW
        return Branch.REJECT_WRONG_TYPE
    if extension in ACCEPTED_SNIPPET_EXTENSIONS:
        return Branch.RENDER_AS_SNIPPET
    if extension == SPREADSHEET_EXTENSION:
        return Branch.SUGGEST_CONVERSION
    return Branch.UNSUPPORTED_TYPE_NOTICE


def extension_for(name: str = "", content_type: str = "", url: str = "") -> str:
    """Return the lowercase extension (no dot) from the name, URL path or MIME type."""
    for candidate in (name, _url_filename(url)):
        suffix = PurePosixPath(candidate).suffix if candidate else ""
        if suffix:
            return suffix[1:].lower()
    mime = content_type.lower().split(";")[0].strip()
    return _MIME_TO_EXTENSION.get(mime, "")


def mime_for(extension: str) -> str:
    return EXTENSION_TO_MIME.get(extension.lower().lstrip("."), "application/octet-stream")


def _url_filename(url: str) -> str:
    if not url or url.startswith("data:"):
        return ""
    return PurePosixPath(unquote(urlparse(url).path)).name
