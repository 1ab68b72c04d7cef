"""Server module -- aiohttp application factory and Bot Framework endpoint."""

from __future__ import annotations

from .app import create_adapter, create_app, main

__all__ = ["create_adapter", "create_app", "main"]
