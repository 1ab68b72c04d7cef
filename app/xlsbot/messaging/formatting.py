"""Markdown helpers -- code snippets, templated replies and plain-text fallback."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

_TEMPLATE_RE = re.compile(r"\$\[([A-Za-z_][A-Za-z0-9_]*)\]")


def snippet(data: Any, language: str = "json") -> str:
    """Wrap *data* in a fenced code block; non-strings are rendered as JSON."""
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8", errors="replace")
    if not isinstance(data, str):
        data = json.dumps(data, indent=2, default=str)
    fence = "````" if "```" in data else "```"
    return f"{fence}{language}\n{data.rstrip()}\n{fence}"


def text_snippet(text: str, extension: str) -> str:
    """Snippet for an uploaded text file; JSON is re-indented when it parses."""
    if extension == "json":
        try:
            return snippet(json.loads(text), "json")
        except json.JSONDecodeError:
            pass
    return snippet(text, "" if extension == "txt" else extension)


def html_snippet(html: str) -> str:
    return snippet(html, "html")


def fill_template(utterance: str, values: Mapping[str, Any]) -> str:
    """Replace ``$[name]`` placeholders; unknown names are left untouched."""

    def _sub(m: re.Match) -> str:
        key = m.group(1)
        return str(values[key]) if key in values else m.group(0)

    return _TEMPLATE_RE.sub(_sub, utterance)


def strip_markdown(text: str) -> str:
    """Strip Markdown formatting to produce clean plain text."""
    text = re.sub(r"`{3,}\w*\n(.*?)`{3,}", r"\1", text, flags=re.DOTALL)
    text = re.sub(r"^#{1,6}\s+(.+)$", r"\1", text, flags=re.MULTILINE)
    text = re.sub(r"\*\*(.+?)\*\*", r"\1", text)
    text = re.sub(r"__(.+?)__", r"\1", text)
    text = re.sub(r"(?<!\w)\*([^*\n]+?)\*(?!\w)", r"\1", text)
    text = re.sub(r"~~(.+?)~~", r"\1", text)
    text = re.sub(r"\[([^\]]+)\]\(([^)]+)\)", r"\1 (\2)", text)
    return text.strip()
