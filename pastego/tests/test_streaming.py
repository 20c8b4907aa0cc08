"""Tests for provider wire-format decoders."""

import json

import pytest

from pastego.core.errors import GenerationError, MalformedStreamFrame
from pastego.core.providers import provider_from_preset
from pastego.core.streaming import (
    ClaudeStreamDecoder,
    Frame,
    OllamaStreamDecoder,
    OpenAIStreamDecoder,
    decoder_for,
)
from pastego.models.schemas import ProviderKind


def sse(payload) -> str:
    return "data: " + json.dumps(payload)


class TestOpenAIStreamDecoder:
    decoder = OpenAIStreamDecoder()

    def test_content_delta(self):
        frame = self.decoder.decode_line(sse({"choices": [{"delta": {"content": "Hel"}}]}))
        assert frame == Frame(fragments=("Hel",))

    def test_done_marker(self):
        assert self.decoder.decode_line("data: [DONE]").done is True

    def test_non_data_lines_are_ignored(self):
        assert self.decoder.decode_line("") == Frame()
        assert self.decoder.decode_line(": keep-alive") == Frame()
        assert self.decoder.decode_line("event: ping") == Frame()

    def test_role_only_and_usage_chunks(self):
        assert self.decoder.decode_line(sse({"choices": [{"delta": {"role": "assistant"}}]})) == Frame()
        assert self.decoder.decode_line(sse({"choices": [], "usage": {"total_tokens": 3}})) == Frame()

    def test_malformed_json(self):
        with pytest.raises(MalformedStreamFrame):
            self.decoder.decode_line("data: {not json")

    def test_error_payload(self):
        with pytest.raises(GenerationError, match="rate limited"):
            self.decoder.decode_line(sse({"error": {"message": "rate limited"}}))

    def test_request_shape(self):
        provider = provider_from_preset(ProviderKind.KIMI, api_key="sk-k", endpoint="https://x.test/v1/")

        spec = self.decoder.build_request(provider, "hi")

        assert spec.url == "https://x.test/v1/chat/completions"
        assert spec.headers["Authorization"] == "Bearer sk-k"
        assert spec.body["stream"] is True
        assert spec.body["messages"] == [{"role": "user", "content": "hi"}]
        assert spec.body["model"] == "moonshot-v1-128k"


class TestClaudeStreamDecoder:
    decoder = ClaudeStreamDecoder(max_tokens=512)

    def test_text_delta(self):
        line = sse({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "lo"}})
        assert self.decoder.decode_line(line) == Frame(fragments=("lo",))

    def test_message_stop(self):
        assert self.decoder.decode_line(sse({"type": "message_stop"})).done is True

    def test_other_events_are_ignored(self):
        assert self.decoder.decode_line(sse({"type": "message_start", "message": {}})) == Frame()
        assert self.decoder.decode_line("event: content_block_delta") == Frame()

    def test_error_event(self):
        line = sse({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})
        with pytest.raises(GenerationError, match="Overloaded"):
            self.decoder.decode_line(line)

    def test_request_shape(self):
        provider = provider_from_preset(ProviderKind.CLAUDE, api_key="ak")

        spec = self.decoder.build_request(provider, "hi")

        assert spec.url == "https://api.anthropic.com/v1/messages"
        assert spec.headers["x-api-key"] == "ak"
        assert spec.headers["anthropic-version"] == "2023-06-01"
        assert spec.body["max_tokens"] == 512


class TestOllamaStreamDecoder:
    decoder = OllamaStreamDecoder()

    def test_response_and_done(self):
        assert self.decoder.decode_line('{"response": "Hi", "done": false}') == Frame(fragments=("Hi",))
        assert self.decoder.decode_line('{"response": "", "done": true}') == Frame(done=True)

    def test_final_fragment_with_done(self):
        frame = self.decoder.decode_line('{"response": "!", "done": true}')
        assert frame == Frame(fragments=("!",), done=True)

    def test_malformed_line(self):
        with pytest.raises(MalformedStreamFrame):
            self.decoder.decode_line("garbage")

    def test_error_line(self):
        with pytest.raises(GenerationError, match="model not found"):
            self.decoder.decode_line('{"error": "model not found"}')

    def test_request_without_key_has_no_auth(self):
        provider = provider_from_preset(ProviderKind.OLLAMA)

        spec = self.decoder.build_request(provider, "hi")

        assert spec.url == "http://localhost:11434/api/generate"
        assert "Authorization" not in spec.headers
        assert spec.body == {"model": "llama3", "prompt": "hi", "stream": True}


class TestDecoderFor:
    @pytest.mark.parametrize(
        "kind, expected",
        [
            (ProviderKind.OPENAI, OpenAIStreamDecoder),
            (ProviderKind.KIMI, OpenAIStreamDecoder),
            (ProviderKind.MINIMAX, OpenAIStreamDecoder),
            (ProviderKind.CLAUDE, ClaudeStreamDecoder),
            (ProviderKind.OLLAMA, OllamaStreamDecoder),
        ],
    )
    def test_dispatch(self, kind, expected):
        assert isinstance(decoder_for(kind), expected)

    def test_claude_max_tokens_is_passed(self):
        assert decoder_for("claude", claude_max_tokens=99).max_tokens == 99

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            decoder_for("gemini")
