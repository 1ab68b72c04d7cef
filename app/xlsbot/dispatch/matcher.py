"""Trigger resolution -- which registered handlers an event fires."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from .models import Event, Keywords, Regex, Special, SpecialForm, TriggerSpec, normalize_text

logger = logging.getLogger(__name__)


def resolve(event: Event, registry: Sequence[TriggerSpec]) -> list[TriggerSpec]:
    """Return the specs *event* fires, in registration order.

    Form submissions only reach form-submission specs and uploads only reach
    upload specs; text routing applies to everything else.
    """
    if event.form_submission is not None:
        return _special(registry, SpecialForm.FORM_SUBMISSION)
    if event.attachment_refs:
        return _special(registry, SpecialForm.FILE_UPLOAD)

    normalized = normalize_text(event.text)
    if not normalized:
        return []
    return [spec for spec in registry if _matches_text(spec, event.text, normalized)]


def _special(registry: Sequence[TriggerSpec], form: SpecialForm) -> list[TriggerSpec]:
    return [
        spec for spec in registry
        if isinstance(spec.pattern, Special) and spec.pattern.form is form
    ]


def _matches_text(spec: TriggerSpec, raw: str, normalized: str) -> bool:
    pattern = spec.pattern
    if isinstance(pattern, Keywords):
        return normalized in pattern.words
    if isinstance(pattern, Regex):
        return pattern.pattern.search(raw) is not None
    if isinstance(pattern, Special):
        return False
    raise TypeError(f"Unsupported trigger pattern on {spec.key!r}: {pattern!r}")


def describe(spec: TriggerSpec) -> str:
    """Human-readable form of a trigger pattern, used by help listings."""
    pattern = spec.pattern
    if isinstance(pattern, Keywords):
        return ", ".join(sorted(pattern.words))
    if isinstance(pattern, Regex):
        return f"/{pattern.pattern.pattern}/"
    return pattern.form.value
