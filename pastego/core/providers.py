"""AI provider registry with a single-default invariant."""

import logging
from typing import Any, Dict, List, Optional

import pyarrow as pa

from pastego.models.schemas import AiProvider, ProviderKind
from .errors import NoProviderConfigured, ValidationError
from .storage import LanceTable, quote

logger = logging.getLogger(__name__)

PROVIDER_PRESETS: Dict[ProviderKind, Dict[str, Any]] = {
    ProviderKind.OPENAI: {
        "label": "OpenAI",
        "endpoint": "https://api.openai.com/v1",
        "models": ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"],
        "needs_key": True,
    },
    ProviderKind.CLAUDE: {
        "label": "Claude (Anthropic)",
        "endpoint": "https://api.anthropic.com/v1",
        "models": [
            "claude-sonnet-4-20250514",
            "claude-haiku-4-20250414",
            "claude-opus-4-20250514",
        ],
        "needs_key": True,
    },
    ProviderKind.KIMI: {
        "label": "Kimi (Moonshot)",
        "endpoint": "https://api.moonshot.cn/v1",
        "models": ["moonshot-v1-128k", "moonshot-v1-32k", "moonshot-v1-8k"],
        "needs_key": True,
    },
    ProviderKind.MINIMAX: {
        "label": "MiniMax",
        "endpoint": "https://api.minimax.chat/v1",
        "models": ["MiniMax-Text-01", "abab6.5s-chat", "abab5.5-chat"],
        "needs_key": True,
    },
    ProviderKind.OLLAMA: {
        "label": "Ollama (local)",
        "endpoint": "http://localhost:11434",
        "models": ["llama3", "mistral", "codellama", "qwen2"],
        "needs_key": False,
    },
}


def provider_from_preset(kind: ProviderKind, **overrides) -> AiProvider:
    """Build a provider using the preset endpoint and first model for ``kind``."""
    kind = ProviderKind(kind)
    preset = PROVIDER_PRESETS[kind]
    fields = {
        "name": preset["label"],
        "kind": kind,
        "endpoint": preset["endpoint"],
        "model": preset["models"][0],
    }
    fields.update(overrides)
    return AiProvider(**fields)


class ProviderRegistry(LanceTable):
    """Configured AI backends, listed by name."""

    table_name = "providers"
    schema = pa.schema(
        [
            pa.field("id", pa.string()),
            pa.field("name", pa.string()),
            pa.field("kind", pa.string()),
            pa.field("endpoint", pa.string()),
            pa.field("model", pa.string()),
            pa.field("api_key", pa.string()),
            pa.field("is_default", pa.bool_()),
        ]
    )

    @staticmethod
    def _to_row(provider: AiProvider) -> Dict[str, Any]:
        row = provider.model_dump()
        row["kind"] = provider.kind.value
        return row

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> AiProvider:
        return AiProvider(
            id=row["id"],
            name=row["name"],
            kind=ProviderKind(row["kind"]),
            endpoint=row["endpoint"],
            model=row["model"],
            api_key=row.get("api_key") or "",
            is_default=bool(row["is_default"]),
        )

    async def list(self) -> List[AiProvider]:
        await self._ensure_initialized()
        df = self._frame()
        if df.empty:
            return []
        df = df.sort_values("name", kind="mergesort")
        return [self._from_row(row) for row in df.to_dict("records")]

    async def get(self, provider_id: str) -> Optional[AiProvider]:
        await self._ensure_initialized()
        rows = self._rows("id", provider_id)
        return self._from_row(rows[0]) if rows else None

    async def save(self, provider: AiProvider) -> AiProvider:
        """Upsert by id; marking a provider default clears the flag everywhere else."""
        if not provider.name.strip():
            raise ValidationError("Provider name must not be empty")
        if not provider.endpoint.strip():
            raise ValidationError("Provider endpoint must not be empty")
        if not provider.model.strip():
            raise ValidationError("Provider model must not be empty")

        await self._ensure_initialized()
        async with self._lock:
            if provider.is_default:
                self.table.update(where="is_default = true", values={"is_default": False})
            self.table.delete(f"id = {quote(provider.id)}")
            self.table.add([self._to_row(provider)])

        logger.info(f"Saved provider {provider.name} ({provider.kind.value})")
        return provider

    async def delete(self, provider_id: str) -> None:
        """Remove a provider; a deleted default is not replaced automatically."""
        await self._ensure_initialized()
        async with self._lock:
            self.table.delete(f"id = {quote(provider_id)}")

    async def resolve(self, provider_id: Optional[str] = None) -> AiProvider:
        """Explicit id if it exists, else the default, else the first configured."""
        providers = await self.list()
        if not providers:
            raise NoProviderConfigured(
                "No AI provider configured. Please add one in Settings."
            )

        if provider_id:
            for provider in providers:
                if provider.id == provider_id:
                    return provider
            logger.warning(f"Provider {provider_id} not found, falling back to default")

        for provider in providers:
            if provider.is_default:
                return provider
        return providers[0]
