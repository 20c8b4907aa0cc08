#!/usr/bin/env python3
"""PasteGo MCP Server - clipboard history with AI generation."""

import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent
from mcp.server.models import InitializationOptions
from mcp.server.lowlevel import NotificationOptions

from pastego.core.ai_detector import ProviderDetector
from pastego.core.blobs import FileBlobStore
from pastego.core.config import Settings
from pastego.core.errors import NotFound
from pastego.core.generation import GenerationController
from pastego.core.providers import ProviderRegistry
from pastego.core.storage import HistoryStore
from pastego.core.templates import TemplateStore
from pastego.core.watcher import ClipboardWatcher
from pastego.models.schemas import AiProvider, Template

logger = logging.getLogger(__name__)


def _object_schema(properties: Dict[str, Any], required: Optional[List[str]] = None) -> Dict[str, Any]:
    schema = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


ID_PROPERTY = {"type": "string", "description": "Unique identifier"}


class PasteGoMCPServer:
    """MCP server exposing clip history, templates, providers and generation."""

    def __init__(self, settings: Optional[Settings] = None, clipboard: Any = None):
        self.settings = settings or Settings.from_env()
        db_path = self.settings.db_path

        self.history = HistoryStore(
            db_path,
            blob_store=FileBlobStore(self.settings.images_dir),
            dedup_window=self.settings.dedup_window,
            default_limit=self.settings.default_query_limit,
        )
        self.templates = TemplateStore(db_path)
        self.providers = ProviderRegistry(db_path)
        self.watcher = ClipboardWatcher(
            self.history, clipboard=clipboard, interval=self.settings.poll_interval
        )
        self.generator = GenerationController(
            self.providers,
            templates=self.templates,
            timeout=self.settings.request_timeout,
            connect_timeout=self.settings.connect_timeout,
            claude_max_tokens=self.settings.claude_max_tokens,
        )

        self.app = Server("pastego")
        self._register_handlers()

    def _register_handlers(self):
        """Register MCP protocol handlers."""

        @self.app.list_tools()
        async def list_tools() -> List[Tool]:
            return self._tools()

        @self.app.call_tool()
        async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
            """Handle MCP tool calls with structured output."""
            try:
                result = await self._dispatch_tool_call(name, arguments or {})
                return [
                    TextContent(
                        type="text",
                        text=json.dumps(result, indent=2, ensure_ascii=False),
                    )
                ]
            except Exception as e:
                logger.warning(f"Tool {name} failed: {e}")
                error_result = {"error": str(e), "tool": name, "arguments": arguments}
                return [
                    TextContent(type="text", text=json.dumps(error_result, indent=2))
                ]

    def _tools(self) -> List[Tool]:
        return [
            Tool(
                name="clip_list",
                description="List clipboard history, pinned first, newest first",
                inputSchema=_object_schema(
                    {
                        "search": {"type": "string", "description": "Case-insensitive substring"},
                        "clip_type": {
                            "type": "string",
                            "enum": ["all", "text", "code", "url", "image"],
                            "default": "all",
                        },
                        "limit": {"type": "integer", "minimum": 0, "default": 100},
                        "offset": {"type": "integer", "minimum": 0, "default": 0},
                    }
                ),
            ),
            Tool(
                name="clip_get",
                description="Get one clipboard entry by ID",
                inputSchema=_object_schema({"clip_id": ID_PROPERTY}, ["clip_id"]),
            ),
            Tool(
                name="clip_pin",
                description="Toggle the pinned state of a clipboard entry",
                inputSchema=_object_schema({"clip_id": ID_PROPERTY}, ["clip_id"]),
            ),
            Tool(
                name="clip_delete",
                description="Delete clipboard entries by ID",
                inputSchema=_object_schema(
                    {"clip_ids": {"type": "array", "items": {"type": "string"}}},
                    ["clip_ids"],
                ),
            ),
            Tool(
                name="clip_prune",
                description="Delete old or surplus unpinned entries",
                inputSchema=_object_schema(
                    {
                        "keep_days": {"type": "number", "minimum": 0},
                        "max_count": {"type": "integer", "minimum": 0},
                    }
                ),
            ),
            Tool(
                name="template_list",
                description="List prompt templates",
                inputSchema=_object_schema({}),
            ),
            Tool(
                name="template_save",
                description="Create or update a prompt template; {{materials}} marks where clips go",
                inputSchema=_object_schema(
                    {
                        "id": ID_PROPERTY,
                        "name": {"type": "string"},
                        "prompt": {"type": "string"},
                        "category": {"type": "string", "default": "general"},
                        "shortcut": {"type": "string"},
                    },
                    ["name", "prompt"],
                ),
            ),
            Tool(
                name="template_delete",
                description="Delete a prompt template",
                inputSchema=_object_schema({"template_id": ID_PROPERTY}, ["template_id"]),
            ),
            Tool(
                name="provider_list",
                description="List configured AI providers",
                inputSchema=_object_schema({}),
            ),
            Tool(
                name="provider_save",
                description="Create or update an AI provider",
                inputSchema=_object_schema(
                    {
                        "id": ID_PROPERTY,
                        "name": {"type": "string"},
                        "kind": {
                            "type": "string",
                            "enum": ["openai", "claude", "ollama", "kimi", "minimax"],
                        },
                        "endpoint": {"type": "string"},
                        "model": {"type": "string"},
                        "api_key": {"type": "string", "default": ""},
                        "is_default": {"type": "boolean", "default": False},
                    },
                    ["name", "kind", "endpoint", "model"],
                ),
            ),
            Tool(
                name="provider_delete",
                description="Delete an AI provider",
                inputSchema=_object_schema({"provider_id": ID_PROPERTY}, ["provider_id"]),
            ),
            Tool(
                name="generate",
                description="Run an AI generation over selected clips, in selection order",
                inputSchema=_object_schema(
                    {
                        "clip_ids": {"type": "array", "items": {"type": "string"}},
                        "template_id": {"type": "string"},
                        "instruction": {"type": "string", "default": ""},
                        "provider_id": {"type": "string"},
                    },
                    ["clip_ids"],
                ),
            ),
            Tool(
                name="quick_template",
                description="Apply a template to the current clipboard text",
                inputSchema=_object_schema(
                    {
                        "template_id": ID_PROPERTY,
                        "text": {"type": "string", "description": "Overrides the clipboard"},
                        "provider_id": {"type": "string"},
                    },
                    ["template_id"],
                ),
            ),
            Tool(
                name="generation_cancel",
                description="Cancel the running generation",
                inputSchema=_object_schema({}),
            ),
            Tool(
                name="copy_result",
                description="Copy text (default: last generation output) to the clipboard",
                inputSchema=_object_schema({"text": {"type": "string"}}),
            ),
        ]

    async def _dispatch_tool_call(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Dispatch tool calls to appropriate handlers."""
        handlers = {
            "clip_list": self._handle_clip_list,
            "clip_get": self._handle_clip_get,
            "clip_pin": self._handle_clip_pin,
            "clip_delete": self._handle_clip_delete,
            "clip_prune": self._handle_clip_prune,
            "template_list": self._handle_template_list,
            "template_save": self._handle_template_save,
            "template_delete": self._handle_template_delete,
            "provider_list": self._handle_provider_list,
            "provider_save": self._handle_provider_save,
            "provider_delete": self._handle_provider_delete,
            "generate": self._handle_generate,
            "quick_template": self._handle_quick_template,
            "generation_cancel": self._handle_generation_cancel,
            "copy_result": self._handle_copy_result,
        }

        handler = handlers.get(name)
        if not handler:
            raise ValueError(f"Unknown tool: {name}")

        return await handler(arguments)

    async def _handle_clip_list(self, args: Dict[str, Any]) -> Dict[str, Any]:
        clips = await self.history.query(
            search=args.get("search"),
            clip_type=args.get("clip_type"),
            limit=args.get("limit"),
            offset=args.get("offset", 0),
        )
        return {"clips": [c.model_dump(mode="json") for c in clips], "count": len(clips)}

    async def _handle_clip_get(self, args: Dict[str, Any]) -> Dict[str, Any]:
        clip = await self.history.get(args["clip_id"])
        if clip is None:
            raise NotFound(f"Clip not found: {args['clip_id']}")
        return clip.model_dump(mode="json")

    async def _handle_clip_pin(self, args: Dict[str, Any]) -> Dict[str, Any]:
        pinned = await self.history.toggle_pin(args["clip_id"])
        return {"id": args["clip_id"], "is_pinned": pinned}

    async def _handle_clip_delete(self, args: Dict[str, Any]) -> Dict[str, Any]:
        removed = await self.history.delete_many(args["clip_ids"])
        return {"removed": removed, "count": len(removed)}

    async def _handle_clip_prune(self, args: Dict[str, Any]) -> Dict[str, Any]:
        count = await self.history.prune(args.get("keep_days"), args.get("max_count"))
        return {"pruned": count}

    async def _handle_template_list(self, args: Dict[str, Any]) -> Dict[str, Any]:
        templates = await self.templates.list()
        return {"templates": [t.model_dump(mode="json") for t in templates]}

    async def _handle_template_save(self, args: Dict[str, Any]) -> Dict[str, Any]:
        template = await self.templates.save(Template(**args))
        return template.model_dump(mode="json")

    async def _handle_template_delete(self, args: Dict[str, Any]) -> Dict[str, Any]:
        await self.templates.delete(args["template_id"])
        return {"id": args["template_id"], "status": "removed"}

    async def _handle_provider_list(self, args: Dict[str, Any]) -> Dict[str, Any]:
        providers = await self.providers.list()
        return {"providers": [self._public_provider(p) for p in providers]}

    async def _handle_provider_save(self, args: Dict[str, Any]) -> Dict[str, Any]:
        provider = await self.providers.save(AiProvider(**args))
        return self._public_provider(provider)

    async def _handle_provider_delete(self, args: Dict[str, Any]) -> Dict[str, Any]:
        await self.providers.delete(args["provider_id"])
        return {"id": args["provider_id"], "status": "removed"}

    async def _handle_generate(self, args: Dict[str, Any]) -> Dict[str, Any]:
        items = []
        for clip_id in args["clip_ids"]:
            clip = await self.history.get(clip_id)
            if clip is None:
                raise NotFound(f"Clip not found: {clip_id}")
            items.append(clip)

        template = None
        if args.get("template_id"):
            template = await self.templates.require(args["template_id"])

        result = await self.generator.generate(
            items,
            template=template,
            extra_instruction=args.get("instruction", ""),
            provider_id=args.get("provider_id"),
        )
        return result.model_dump()

    async def _handle_quick_template(self, args: Dict[str, Any]) -> Dict[str, Any]:
        text = args.get("text")
        if text is None:
            content = await asyncio.to_thread(self.watcher.clipboard.read_current)
            text = content.data if isinstance(content.data, str) else ""

        session = await self.generator.quick_template(
            args["template_id"], text, provider_id=args.get("provider_id")
        )
        result = await session.run()
        return result.model_dump()

    async def _handle_generation_cancel(self, args: Dict[str, Any]) -> Dict[str, Any]:
        cancelled = await self.generator.cancel()
        return {"cancelled": cancelled}

    async def _handle_copy_result(self, args: Dict[str, Any]) -> Dict[str, Any]:
        text = args.get("text")
        if text is None:
            session = self.generator.current
            text = session.output if session is not None else ""
        if not text:
            return {"status": "empty"}

        await self.watcher.write(text)
        return {"status": "copied", "length": len(text)}

    @staticmethod
    def _public_provider(provider: AiProvider) -> Dict[str, Any]:
        data = provider.model_dump(mode="json")
        data["api_key"] = "***" if provider.api_key else ""
        return data

    async def startup(self):
        """Seed providers, apply retention and start the clipboard watcher."""
        await ProviderDetector().seed(self.providers)
        if self.settings.retention_days is not None:
            await self.history.prune(keep_days=self.settings.retention_days)
        self.watcher.start()

    async def shutdown(self):
        await self.generator.cancel()
        await self.watcher.stop()

    async def run(self):
        """Run MCP server with proper protocol compliance."""
        await self.startup()
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.app.run(
                    read_stream,
                    write_stream,
                    InitializationOptions(
                        server_name="pastego",
                        server_version="0.1.0",
                        capabilities=self.app.get_capabilities(
                            notification_options=NotificationOptions(),
                            experimental_capabilities={},
                        ),
                    ),
                )
        finally:
            await self.shutdown()


async def async_main():
    """Main async entry point."""
    server = PasteGoMCPServer()
    await server.run()


def main():
    """Synchronous entry point for console script."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("PasteGo MCP Server stopped")
    except Exception as e:
        logger.error(f"Server error: {e}")
        raise


if __name__ == "__main__":
    main()
