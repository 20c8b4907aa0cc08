"""AI provider detection from environment keys and local servers."""

import asyncio
import logging
import os
from typing import Dict, List, Optional

import httpx

from pastego.models.schemas import AiProvider, ProviderKind
from .providers import PROVIDER_PRESETS, ProviderRegistry, provider_from_preset

logger = logging.getLogger(__name__)

CLOUD_KEY_ENV: Dict[ProviderKind, str] = {
    ProviderKind.OPENAI: "OPENAI_API_KEY",
    ProviderKind.CLAUDE: "ANTHROPIC_API_KEY",
    ProviderKind.KIMI: "MOONSHOT_API_KEY",
    ProviderKind.MINIMAX: "MINIMAX_API_KEY",
}


class ProviderDetector:
    """Proposes provider configurations for a registry with nothing configured."""

    def __init__(self, timeout: float = 2, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def detect_all(self) -> List[AiProvider]:
        """Local servers first, then cloud providers with keys in the environment."""
        providers = []

        local = await self._detect_ollama()
        if local is not None:
            providers.append(local)

        providers.extend(self._detect_cloud())
        return providers

    async def _detect_ollama(self) -> Optional[AiProvider]:
        """Probe a local Ollama server and pick its first installed model."""
        api_base = os.getenv(
            "OLLAMA_API_BASE", PROVIDER_PRESETS[ProviderKind.OLLAMA]["endpoint"]
        ).rstrip("/")

        try:
            start_time = asyncio.get_running_loop().time()
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(f"{api_base}/api/tags")

            if response.status_code != 200:
                logger.debug(f"Ollama at {api_base} answered HTTP {response.status_code}")
                return None

            latency = (asyncio.get_running_loop().time() - start_time) * 1000
            models = [
                m.get("name", "")
                for m in response.json().get("models", [])
                if m.get("name") and "embed" not in m.get("name", "").lower()
            ]
            logger.info(f"Detected Ollama at {api_base} ({latency:.0f}ms, {len(models)} models)")

            overrides = {"endpoint": api_base}
            if models:
                overrides["model"] = models[0]
            return provider_from_preset(ProviderKind.OLLAMA, **overrides)

        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Ollama at {api_base} not available: {e}")
            return None

    def _detect_cloud(self) -> List[AiProvider]:
        providers = []
        for kind, env_name in CLOUD_KEY_ENV.items():
            api_key = os.getenv(env_name)
            if not api_key:
                continue

            overrides = {"api_key": api_key}
            model = os.getenv(f"{kind.value.upper()}_MODEL")
            if model:
                overrides["model"] = model
            providers.append(provider_from_preset(kind, **overrides))
        return providers

    async def seed(self, registry: ProviderRegistry) -> List[AiProvider]:
        """Save detected providers when the registry is empty; the first becomes default."""
        if await registry.list():
            return []

        saved = []
        for index, provider in enumerate(await self.detect_all()):
            if index == 0:
                provider = provider.model_copy(update={"is_default": True})
            saved.append(await registry.save(provider))

        if saved:
            logger.info(f"Seeded {len(saved)} detected providers")
        return saved
