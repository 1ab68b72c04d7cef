"""Bot server -- app factory and entry point."""

from __future__ import annotations

import logging

from aiohttp import web
from aiohttp.abc import AbstractAccessLogger
from botbuilder.core import BotFrameworkAdapter, BotFrameworkAdapterSettings, TurnContext
from botbuilder.schema import Activity, ActivityTypes
from botframework.connector.auth import MicrosoftAppCredentials

from .. import __version__
from ..config.settings import Settings, cfg
from ..dispatch.factory import create_engine, create_fetcher
from ..media.fetch import TokenProvider
from ..messaging.bot import Bot
from ..messaging.transport import PLAIN_TEXT_CHANNELS
from ..util.async_helpers import run_sync
from .bot_endpoint import BotEndpoint

logger = logging.getLogger(__name__)

_QUIET_PATHS = frozenset({"/health"})
_ENGINE_KEY = "xlsbot.engine"


# ---------------------------------------------------------------------------
# Access logger
# ---------------------------------------------------------------------------


class QuietAccessLogger(AbstractAccessLogger):
    """Demotes polling-endpoint log entries to DEBUG."""

    def log(self, request: web.BaseRequest, response: web.StreamResponse, time: float) -> None:
        level = logging.DEBUG if request.path in _QUIET_PATHS else logging.INFO
        self.logger.log(
            level,
            "%s %s %s %s %.3fs",
            request.remote,
            request.method,
            request.path,
            response.status,
            time,
        )


# ---------------------------------------------------------------------------
# Bot Framework adapter
# ---------------------------------------------------------------------------


def create_adapter(settings: Settings | None = None) -> BotFrameworkAdapter:
    settings = settings or cfg
    adapter = BotFrameworkAdapter(BotFrameworkAdapterSettings(
        app_id=settings.bot_app_id or None,
        app_password=settings.bot_app_password or None,
        channel_auth_tenant=settings.bot_app_tenant_id or None,
    ))

    async def on_error(context: TurnContext, error: Exception) -> None:
        logger.error("Bot turn error: %s", error, exc_info=True)
        try:
            activity = Activity(type=ActivityTypes.message, text="An error occurred.")
            if (context.activity.channel_id or "").lower() in PLAIN_TEXT_CHANNELS:
                activity.text_format = "plain"
            await context.send_activity(activity)
        except Exception as exc:
            logger.debug("Could not report turn error to user: %s", exc)

    adapter.on_turn_error = on_error
    return adapter


def create_token_provider(settings: Settings) -> TokenProvider | None:
    """Bearer tokens for channel-hosted attachment URLs; ``None`` without credentials."""
    if not settings.bot_app_id or not settings.bot_app_password:
        return None
    credentials = MicrosoftAppCredentials(
        settings.bot_app_id,
        settings.bot_app_password,
        channel_auth_tenant=settings.bot_app_tenant_id or None,
    )

    async def provide() -> str | None:
        try:
            return await run_sync(credentials.get_access_token)
        except Exception as exc:
            logger.warning("[fetch] could not acquire bot token: %s", exc)
            return None

    return provide


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(settings: Settings | None = None) -> web.Application:
    settings = settings or cfg
    settings.ensure_dirs()

    fetcher = create_fetcher(settings, create_token_provider(settings))
    engine = create_engine(settings, fetcher=fetcher)
    adapter = create_adapter(settings)
    bot = Bot(engine)

    app = web.Application()
    app[_ENGINE_KEY] = engine
    BotEndpoint(adapter, bot).register(app.router)
    app.router.add_get("/health", _health)

    async def on_cleanup(_app: web.Application) -> None:
        await fetcher.close()

    app.on_cleanup.append(on_cleanup)
    logger.info("Registered %d triggers", len(engine.registry))
    return app


async def _health(_req: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "version": __version__})


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    logging.basicConfig(
        level=cfg.log_level,
        format="%(asctime)s  %(name)s  %(levelname)s  %(message)s",
    )
    port = cfg.bot_port
    if not cfg.bot_app_id:
        logger.warning("BOT_APP_ID is not set -- /api/messages will answer 503")
    logger.info("Starting bot server on port %d ...", port)
    web.run_app(create_app(), host="0.0.0.0", port=port, access_log_class=QuietAccessLogger)


if __name__ == "__main__":
    main()
