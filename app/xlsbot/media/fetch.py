"""Attachment retrieval -- resolves an AttachmentRef into bytes plus metadata.

Supports ``http(s)`` locators (optionally with a bearer token, which Bot
Framework channels require for uploaded files), inline ``data:`` URIs and
local ``file:`` URIs used by the console host.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from urllib.parse import unquote, unquote_to_bytes, urlparse
from urllib.request import url2pathname

import aiohttp

from ..dispatch.errors import FetchError
from ..dispatch.models import AttachmentRef, FetchedAttachment
from ..util.async_helpers import run_sync
from .classify import extension_for, mime_for

logger = logging.getLogger(__name__)

RESPONSE_TYPES = frozenset({"arraybuffer", "text"})
CHUNK_SIZE = 64 * 1024

TokenProvider = Callable[[], Awaitable[str | None]]


class AttachmentFetcher:
    def __init__(
        self,
        *,
        max_bytes: int,
        timeout: float = 30.0,
        token_provider: TokenProvider | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._max_bytes = max_bytes
        self._timeout = timeout
        self._token_provider = token_provider
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> AttachmentFetcher:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def fetch(self, ref: AttachmentRef, *, response_type: str = "arraybuffer") -> FetchedAttachment:
        if response_type not in RESPONSE_TYPES:
            raise ValueError(f"Unsupported response_type: {response_type!r}")

        scheme = urlparse(ref.url).scheme.lower()
        if scheme == "data":
            data, content_type, name = self._read_data_uri(ref)
        elif scheme == "file":
            data, content_type, name = await self._read_file(ref)
        elif scheme in ("http", "https"):
            data, content_type, name = await self._read_http(ref)
        else:
            raise FetchError(f"Unsupported attachment locator: {ref.url[:60]}", url=ref.url)

        self._check_size(len(data), ref)
        extension = extension_for(name=name, content_type=content_type, url=ref.url)
        mime_type = content_type if content_type and content_type != "application/octet-stream" else mime_for(extension)
        text = data.decode("utf-8", errors="replace") if response_type == "text" else None
        logger.info(
            "[fetch] %s -> %d bytes (ext=%s mime=%s)",
            name or ref.url[:60], len(data), extension or "?", mime_type,
        )
        return FetchedAttachment(data=data, extension=extension, mime_type=mime_type, name=name, text=text)

    # -- locators ------------------------------------------------------------

    def _read_data_uri(self, ref: AttachmentRef) -> tuple[bytes, str, str]:
        header, sep, payload = ref.url[len("data:"):].partition(",")
        if not sep:
            raise FetchError("Malformed data URI", url=ref.url[:60])
        params = header.split(";")
        content_type = ref.content_type or params[0] or "text/plain"
        try:
            if "base64" in params[1:]:
                data = base64.b64decode(payload, validate=True)
            else:
                data = unquote_to_bytes(payload)
        except (binascii.Error, ValueError) as exc:
            raise FetchError(f"Malformed data URI: {exc}", url=ref.url[:60]) from exc
        return data, content_type.lower(), ref.name

    async def _read_file(self, ref: AttachmentRef) -> tuple[bytes, str, str]:
        path = Path(url2pathname(unquote(urlparse(ref.url).path)))
        try:
            size = path.stat().st_size
            self._check_size(size, ref)
            data = await run_sync(path.read_bytes)
        except OSError as exc:
            raise FetchError(f"Failed to read {path.name}: {exc}", url=ref.url) from exc
        return data, ref.content_type.lower(), ref.name or path.name

    async def _read_http(self, ref: AttachmentRef) -> tuple[bytes, str, str]:
        headers: dict[str, str] = {}
        if self._token_provider is not None:
            token = await self._token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        session = self._get_session()
        try:
            async with session.get(
                ref.url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if resp.status >= 400:
                    raise FetchError(
                        f"Download failed with HTTP {resp.status}",
                        url=ref.url,
                        status=resp.status,
                    )
                if resp.content_length is not None:
                    self._check_size(resp.content_length, ref)
                data = await self._read_capped(resp, ref)
                disposition = resp.content_disposition
                name = ref.name or (disposition.filename if disposition and disposition.filename else "")
                content_type = ref.content_type or resp.content_type or ""
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("[fetch] download failed for %s: %s", ref.url[:80], exc)
            raise FetchError(f"Download failed: {exc}", url=ref.url) from exc
        return data, content_type.lower(), name

    async def _read_capped(self, resp: aiohttp.ClientResponse, ref: AttachmentRef) -> bytes:
        chunks: list[bytes] = []
        total = 0
        async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
            total += len(chunk)
            self._check_size(total, ref)
            chunks.append(chunk)
        return b"".join(chunks)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    def _check_size(self, size: int, ref: AttachmentRef) -> None:
        if size > self._max_bytes:
            raise FetchError(
                f"Attachment is too large ({size:,} bytes, limit {self._max_bytes:,})",
                url=ref.url[:60],
            )
