"""Channel messaging -- bot handler, transport, handlers and formatting."""

__all__ = [
    "Bot",
    "BotHandlers",
    "TurnContextSender",
    "build_registry",
    "fill_template",
    "html_snippet",
    "message_to_activity",
    "snippet",
    "strip_markdown",
]
