"""Tests for MCP server functionality."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from pastego.core.config import Settings
from pastego.core.errors import NoProviderConfigured, NotFound
from pastego.mcp_server import PasteGoMCPServer

from conftest import openai_sse, streaming_transport


@pytest.fixture
def server(tmp_path, fake_clipboard):
    """Server with its stores under a temporary home and a fake clipboard."""
    server = PasteGoMCPServer(Settings(home=tmp_path), clipboard=fake_clipboard)
    server.watcher.source_app = None
    return server


async def call(server, name, /, **arguments):
    return await server._dispatch_tool_call(name, arguments)


class TestPasteGoMCPServer:
    """Tool dispatch over real stores."""

    @pytest.mark.asyncio
    async def test_tools_are_listed(self, server):
        names = {tool.name for tool in server._tools()}

        assert {"clip_list", "clip_pin", "generate", "quick_template", "copy_result"} <= names

    @pytest.mark.asyncio
    async def test_unknown_tool(self, server):
        with pytest.raises(ValueError, match="Unknown tool"):
            await call(server, "clip_explode")

    @pytest.mark.asyncio
    async def test_captured_clips_are_listed(self, server, fake_clipboard):
        fake_clipboard.set_text("https://example.com")
        await server.watcher.tick()
        fake_clipboard.set_text("notes")
        await server.watcher.tick()

        everything = await call(server, "clip_list")
        urls = await call(server, "clip_list", clip_type="url")

        assert everything["count"] == 2
        assert [c["content"] for c in everything["clips"]] == ["notes", "https://example.com"]
        assert urls["clips"][0]["clip_type"] == "url"

    @pytest.mark.asyncio
    async def test_pin_get_and_delete(self, server):
        record = await server.history.insert("keep")

        pinned = await call(server, "clip_pin", clip_id=record.id)
        fetched = await call(server, "clip_get", clip_id=record.id)
        deleted = await call(server, "clip_delete", clip_ids=[record.id, "missing"])

        assert pinned == {"id": record.id, "is_pinned": True}
        assert fetched["is_pinned"] is True
        assert deleted == {"removed": [record.id], "count": 1}
        with pytest.raises(NotFound):
            await call(server, "clip_get", clip_id=record.id)

    @pytest.mark.asyncio
    async def test_templates(self, server):
        listed = await call(server, "template_list")
        assert [t["id"] for t in listed["templates"]] == ["tpl-translate"]

        saved = await call(server, "template_save", name="Explain", prompt="Explain {{materials}}")
        assert saved["category"] == "general"

        await call(server, "template_delete", template_id=saved["id"])
        assert len((await call(server, "template_list"))["templates"]) == 1

    @pytest.mark.asyncio
    async def test_provider_api_key_is_masked(self, server):
        saved = await call(
            server,
            "provider_save",
            id="p1",
            name="OpenAI",
            kind="openai",
            endpoint="https://api.openai.com/v1",
            model="gpt-4o",
            api_key="sk-secret",
            is_default=True,
        )
        listed = await call(server, "provider_list")

        assert saved["api_key"] == "***"
        assert listed["providers"][0]["api_key"] == "***"
        assert (await server.providers.get("p1")).api_key == "sk-secret"

        await call(server, "provider_delete", provider_id="p1")
        assert (await call(server, "provider_list"))["providers"] == []

    @pytest.mark.asyncio
    async def test_generate_and_copy_result(self, server, fake_clipboard, openai_provider):
        await server.providers.save(openai_provider)
        requests = []
        server.generator.transport = streaming_transport(
            lambda request: httpx.Response(200, content=openai_sse("Hola", " mundo")), requests
        )
        first = await server.history.insert("Hello")
        second = await server.history.insert("world")

        result = await call(
            server, "generate", clip_ids=[second.id, first.id], instruction="translate to Spanish"
        )

        assert result["state"] == "completed"
        assert result["output"] == "Hola mundo"
        prompt = json.loads(requests[0].content)["messages"][0]["content"]
        assert prompt.index("world") < prompt.index("Hello")

        copied = await call(server, "copy_result")
        assert copied == {"status": "copied", "length": len("Hola mundo")}
        assert fake_clipboard.writes == ["Hola mundo"]

        assert await server.watcher.tick() is None
        assert await server.history.count() == 2

    @pytest.mark.asyncio
    async def test_generate_without_provider(self, server):
        record = await server.history.insert("Hello")

        with pytest.raises(NoProviderConfigured, match="No AI provider configured"):
            await call(server, "generate", clip_ids=[record.id])

    @pytest.mark.asyncio
    async def test_quick_template_reads_clipboard(self, server, fake_clipboard, openai_provider):
        await server.providers.save(openai_provider)
        requests = []
        server.generator.transport = streaming_transport(
            lambda request: httpx.Response(200, content=openai_sse("Bonjour")), requests
        )
        fake_clipboard.set_text("Hello")

        result = await call(server, "quick_template", template_id="tpl-translate")

        assert result["output"] == "Bonjour"
        prompt = json.loads(requests[0].content)["messages"][0]["content"]
        assert prompt.endswith("[Material 1] (text)\nHello")

    @pytest.mark.asyncio
    async def test_cancel_without_generation(self, server):
        assert await call(server, "generation_cancel") == {"cancelled": False}

    @pytest.mark.asyncio
    async def test_copy_result_with_nothing(self, server, fake_clipboard):
        assert await call(server, "copy_result") == {"status": "empty"}
        assert fake_clipboard.writes == []

    @pytest.mark.asyncio
    async def test_startup_and_shutdown(self, server, tmp_path):
        server.settings = Settings(home=tmp_path, retention_days=7)
        server.history.prune = AsyncMock(return_value=0)

        with patch("pastego.mcp_server.ProviderDetector") as detector:
            detector.return_value.seed = AsyncMock(return_value=[])
            await server.startup()

        assert server.watcher.running
        detector.return_value.seed.assert_awaited_once_with(server.providers)
        server.history.prune.assert_awaited_once_with(keep_days=7)

        await server.shutdown()
        assert not server.watcher.running

