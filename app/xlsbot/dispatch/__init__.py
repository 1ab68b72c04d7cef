"""Contextual dispatch core -- matcher, engine, upload workflow."""

__all__ = [
    "DispatchContext",
    "DispatchEngine",
    "Event",
    "TriggerSpec",
    "current_mode",
    "handle_upload",
    "resolve",
]
