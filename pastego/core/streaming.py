"""Per-provider streaming wire formats normalized to fragment/done events.

Each decoder knows how to build the HTTP request for its provider family and
how to turn one received line into zero or more fragments, or signal the end
of the stream. ``decoder_for`` is the single dispatch point.
"""

import json
import logging
from typing import Any, Dict, NamedTuple, Optional, Tuple

from pastego.models.schemas import AiProvider, ProviderKind
from .errors import GenerationError, MalformedStreamFrame

logger = logging.getLogger(__name__)


class Frame(NamedTuple):
    """Decoded content of a single wire line."""

    fragments: Tuple[str, ...] = ()
    done: bool = False


EMPTY = Frame()


class RequestSpec(NamedTuple):
    url: str
    headers: Dict[str, str]
    body: Dict[str, Any]


class StreamDecoder:
    """Base decoder for line-oriented streaming responses."""

    kind = ""

    def build_request(self, provider: AiProvider, prompt: str) -> RequestSpec:
        raise NotImplementedError

    def decode_line(self, line: str) -> Frame:
        raise NotImplementedError

    @staticmethod
    def _load(data: str) -> Any:
        try:
            return json.loads(data)
        except json.JSONDecodeError as e:
            raise MalformedStreamFrame(f"Invalid JSON frame: {data[:200]!r}") from e


def _sse_data(line: str) -> Optional[str]:
    """Payload of an SSE ``data:`` line, or None for other SSE fields."""
    if not line.startswith("data:"):
        return None
    return line[5:].strip()


class OpenAIStreamDecoder(StreamDecoder):
    """OpenAI-compatible chat completions SSE (also Kimi and MiniMax)."""

    kind = "openai"

    def build_request(self, provider: AiProvider, prompt: str) -> RequestSpec:
        return RequestSpec(
            url=f"{provider.endpoint.rstrip('/')}/chat/completions",
            headers={
                "Authorization": f"Bearer {provider.api_key}",
                "Content-Type": "application/json",
            },
            body={
                "model": provider.model,
                "messages": [{"role": "user", "content": prompt}],
                "stream": True,
            },
        )

    def decode_line(self, line: str) -> Frame:
        data = _sse_data(line)
        if not data:
            return EMPTY
        if data == "[DONE]":
            return Frame(done=True)

        parsed = self._load(data)
        if not isinstance(parsed, dict):
            raise MalformedStreamFrame(f"Unexpected frame: {data[:200]!r}")
        if "error" in parsed:
            raise GenerationError(_error_message(parsed["error"]))

        try:
            delta = parsed["choices"][0].get("delta") or {}
        except (KeyError, IndexError, TypeError, AttributeError):
            # Usage and keep-alive chunks carry no choices
            return EMPTY

        content = delta.get("content")
        return Frame(fragments=(content,)) if isinstance(content, str) and content else EMPTY


class ClaudeStreamDecoder(StreamDecoder):
    """Anthropic Messages API SSE."""

    kind = "claude"

    def __init__(self, max_tokens: int = 4096):
        self.max_tokens = max_tokens

    def build_request(self, provider: AiProvider, prompt: str) -> RequestSpec:
        return RequestSpec(
            url=f"{provider.endpoint.rstrip('/')}/messages",
            headers={
                "x-api-key": provider.api_key,
                "anthropic-version": "2023-06-01",
                "Content-Type": "application/json",
            },
            body={
                "model": provider.model,
                "max_tokens": self.max_tokens,
                "messages": [{"role": "user", "content": prompt}],
                "stream": True,
            },
        )

    def decode_line(self, line: str) -> Frame:
        data = _sse_data(line)
        if not data:
            return EMPTY

        parsed = self._load(data)
        if not isinstance(parsed, dict):
            raise MalformedStreamFrame(f"Unexpected frame: {data[:200]!r}")

        event_type = parsed.get("type", "")
        if event_type == "content_block_delta":
            text = (parsed.get("delta") or {}).get("text")
            return Frame(fragments=(text,)) if isinstance(text, str) and text else EMPTY
        if event_type == "message_stop":
            return Frame(done=True)
        if event_type == "error":
            raise GenerationError(_error_message(parsed.get("error")))
        return EMPTY


class OllamaStreamDecoder(StreamDecoder):
    """Ollama ``/api/generate`` newline-delimited JSON."""

    kind = "ollama"

    def build_request(self, provider: AiProvider, prompt: str) -> RequestSpec:
        headers = {"Content-Type": "application/json"}
        if provider.api_key:
            headers["Authorization"] = f"Bearer {provider.api_key}"
        return RequestSpec(
            url=f"{provider.endpoint.rstrip('/')}/api/generate",
            headers=headers,
            body={"model": provider.model, "prompt": prompt, "stream": True},
        )

    def decode_line(self, line: str) -> Frame:
        if not line:
            return EMPTY

        parsed = self._load(line)
        if not isinstance(parsed, dict):
            raise MalformedStreamFrame(f"Unexpected frame: {line[:200]!r}")
        if "error" in parsed:
            raise GenerationError(_error_message(parsed["error"]))

        text = parsed.get("response")
        fragments = (text,) if isinstance(text, str) and text else ()
        return Frame(fragments=fragments, done=parsed.get("done") is True)


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)


def decoder_for(kind: ProviderKind, claude_max_tokens: int = 4096) -> StreamDecoder:
    """Select the decoder for a provider kind."""
    kind = ProviderKind(kind)
    if kind in (ProviderKind.OPENAI, ProviderKind.KIMI, ProviderKind.MINIMAX):
        return OpenAIStreamDecoder()
    if kind is ProviderKind.CLAUDE:
        return ClaudeStreamDecoder(max_tokens=claude_max_tokens)
    if kind is ProviderKind.OLLAMA:
        return OllamaStreamDecoder()
    raise ValueError(f"Unknown provider kind: {kind}")
