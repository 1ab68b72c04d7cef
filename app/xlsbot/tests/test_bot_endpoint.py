"""Tests for BotEndpoint."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer
from botbuilder.schema import Activity

from app.xlsbot.server.bot_endpoint import BotEndpoint


@pytest.fixture()
def endpoint() -> BotEndpoint:
    adapter = AsyncMock()
    adapter.process_activity = AsyncMock(return_value=None)
    return BotEndpoint(adapter, AsyncMock())


def _configured():
    return patch.multiple(
        "app.xlsbot.server.bot_endpoint.cfg",
        bot_app_id="app-id",
        bot_app_password="secret",
    )


async def _post(endpoint: BotEndpoint, **kwargs) -> tuple[int, str]:
    app = web.Application()
    endpoint.register(app.router)
    async with TestClient(TestServer(app)) as client:
        resp = await client.post("/api/messages", headers={"Authorization": "Bearer t"}, **kwargs)
        return resp.status, await resp.text()


class TestPostMessages:
    @pytest.mark.asyncio
    async def test_unconfigured_returns_503(self, endpoint: BotEndpoint) -> None:
        with patch.multiple("app.xlsbot.server.bot_endpoint.cfg", bot_app_id="", bot_app_password=""):
            status, body = await _post(endpoint, json={"type": "message"})
        assert status == 503
        endpoint.adapter.process_activity.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_activity_forwarded(self, endpoint: BotEndpoint) -> None:
        with _configured():
            status, body = await _post(endpoint, json={"type": "message", "text": "convert", "channelId": "msteams"})
        assert status == 200
        activity, auth_header, _callback = endpoint.adapter.process_activity.await_args.args
        assert isinstance(activity, Activity)
        assert activity.text == "convert"
        assert activity.channel_id == "msteams"
        assert auth_header == "Bearer t"

    @pytest.mark.asyncio
    async def test_adapter_response_passed_through(self, endpoint: BotEndpoint) -> None:
        invoke = MagicMock()
        invoke.status = 202
        invoke.body = b'{"accepted": true}'
        endpoint.adapter.process_activity.return_value = invoke
        with _configured():
            status, body = await _post(endpoint, json={"type": "invoke"})
        assert status == 202
        assert "accepted" in body

    @pytest.mark.asyncio
    async def test_invalid_json(self, endpoint: BotEndpoint) -> None:
        with _configured():
            status, body = await _post(endpoint, data=b"{not json")
        assert status == 400

    @pytest.mark.asyncio
    async def test_non_object_body(self, endpoint: BotEndpoint) -> None:
        with _configured():
            status, body = await _post(endpoint, json=["message"])
        assert status == 400

    @pytest.mark.asyncio
    async def test_auth_failure(self, endpoint: BotEndpoint) -> None:
        endpoint.adapter.process_activity.side_effect = PermissionError("bad token")
        with _configured():
            status, body = await _post(endpoint, json={"type": "message"})
        assert status == 401

    @pytest.mark.asyncio
    async def test_processing_failure(self, endpoint: BotEndpoint) -> None:
        endpoint.adapter.process_activity.side_effect = RuntimeError("store down")
        with _configured():
            status, body = await _post(endpoint, json={"type": "message"})
        assert status == 500
        assert "store down" in body


class TestGetMessages:
    @pytest.mark.asyncio
    async def test_get_health_check(self, endpoint: BotEndpoint) -> None:
        app = web.Application()
        endpoint.register(app.router)
        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/api/messages")
            assert resp.status == 200
            assert (await resp.json())["method"] == "POST required"
