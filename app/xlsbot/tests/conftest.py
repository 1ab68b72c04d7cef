"""Shared pytest fixtures for app.xlsbot tests."""

from __future__ import annotations

import io
import random
from pathlib import Path

import pytest
from openpyxl import Workbook

from app.xlsbot.dispatch.models import Event, Message
from app.xlsbot.state.context_store import MemoryContextStore


@pytest.fixture(autouse=True)
def _isolate_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    monkeypatch.setenv("XLSBOT_DATA_DIR", str(data_dir))
    monkeypatch.setenv("DOTENV_PATH", str(tmp_path / ".env"))
    for key in ("BOT_APP_ID", "BOT_APP_PASSWORD", "CONTEXT_STORE", "SAMPLE_FILE_PATH", "DEMO_DATA_URL"):
        monkeypatch.delenv(key, raising=False)
    return data_dir


@pytest.fixture(autouse=True)
def _reset_singletons(_isolate_data_dir: Path):
    from app.xlsbot.util.singletons import reset_all_singletons

    reset_all_singletons()
    yield
    reset_all_singletons()


@pytest.fixture()
def data_dir(_isolate_data_dir: Path) -> Path:
    return _isolate_data_dir


class RecordingSender:
    """Collects outbound messages per conversation."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, Message]] = []

    async def send(self, conversation_id: str, message: Message) -> None:
        self.sent.append((conversation_id, message))

    @property
    def messages(self) -> list[Message]:
        return [m for _, m in self.sent]

    def texts(self) -> list[str]:
        out = []
        for m in self.messages:
            out.append(getattr(m, "text", None) or getattr(m, "markdown", None) or "")
        return out


@pytest.fixture()
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture()
def store() -> MemoryContextStore:
    return MemoryContextStore()


@pytest.fixture()
def rng() -> random.Random:
    return random.Random(1234)


def _make_event(text: str = "", conversation_id: str = "conv-1", **kwargs) -> Event:
    kwargs.setdefault("person_id", "user-1")
    kwargs.setdefault("person_display_name", "Ada")
    return Event(text=text, conversation_id=conversation_id, **kwargs)


@pytest.fixture()
def make_event():
    return _make_event


def _make_xlsx(rows: list[list[object]], *, title: str = "Sheet1", merges: tuple[str, ...] = ()) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = title
    for row in rows:
        ws.append(row)
    for cell_range in merges:
        ws.merge_cells(cell_range)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


@pytest.fixture()
def make_xlsx():
    return _make_xlsx


@pytest.fixture()
def xlsx_bytes() -> bytes:
    return _make_xlsx([["Name", "Qty"], ["apple", 3], ["pear", 5]])
