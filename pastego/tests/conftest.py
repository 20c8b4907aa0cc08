"""Shared fixtures for PasteGo tests."""

import json
import threading
from typing import Callable, Iterable, List

import httpx
import pytest

from pastego.core.blobs import FileBlobStore
from pastego.core.clipboard import EMPTY_CLIPBOARD, ClipboardContent
from pastego.core.errors import ClipboardReadError
from pastego.core.providers import ProviderRegistry
from pastego.core.storage import HistoryStore
from pastego.core.templates import TemplateStore
from pastego.models.schemas import AiProvider, ClipRecord, ClipType, ProviderKind


class FakeClipboard:
    """In-memory stand-in for the OS clipboard."""

    def __init__(self):
        self.content = EMPTY_CLIPBOARD
        self.writes: List[str] = []
        self.fail = False
        self.write_gate: threading.Event = None

    def set_text(self, text: str):
        self.content = ClipboardContent("text", text)

    def set_image(self, data: bytes):
        self.content = ClipboardContent("image", data)

    def read_current(self) -> ClipboardContent:
        if self.fail:
            raise ClipboardReadError("clipboard locked")
        return self.content

    def write(self, text: str):
        if self.write_gate is not None:
            self.write_gate.wait(timeout=5)
        self.writes.append(text)
        self.content = ClipboardContent("text", text)


def openai_sse(*chunks: str, done: bool = True) -> bytes:
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": c}}]}) + "\n\n"
        for c in chunks
    ]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def clip(content: str, clip_type: ClipType = ClipType.TEXT) -> ClipRecord:
    return ClipRecord(content=content, content_hash=f"hash-{content}", clip_type=clip_type)


def streaming_transport(
    handler: Callable[[httpx.Request], httpx.Response], requests: list = None
) -> httpx.MockTransport:
    """MockTransport recording every request before answering it."""

    async def handle(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return handler(request)

    return httpx.MockTransport(handle)


async def byte_stream(parts: Iterable[bytes]):
    for part in parts:
        yield part


@pytest.fixture
def fake_clipboard():
    return FakeClipboard()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "lancedb"


@pytest.fixture
def history(tmp_path, db_path):
    return HistoryStore(db_path, blob_store=FileBlobStore(tmp_path / "images"))


@pytest.fixture
def templates(db_path):
    return TemplateStore(db_path)


@pytest.fixture
def registry(db_path):
    return ProviderRegistry(db_path)


@pytest.fixture
def openai_provider():
    return AiProvider(
        id="p-openai",
        name="OpenAI",
        kind=ProviderKind.OPENAI,
        endpoint="https://api.example.test/v1/",
        model="gpt-4o",
        api_key="sk-test",
        is_default=True,
    )
