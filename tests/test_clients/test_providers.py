"""Tests for provider variants: request shapes, text extraction and error mapping."""

from __future__ import annotations

import httpx
import pytest

from cv_tailor.clients.providers import (
    AnthropicProvider,
    GeminiProvider,
    GrokProvider,
    LocalDeviceProvider,
    OllamaProvider,
    OpenAIProvider,
    build_provider,
    provider_error_message,
)
from cv_tailor.config import DispatchConfig
from cv_tailor.errors import (
    ConfigurationError,
    MalformedResponseError,
    ProviderConnectionError,
    ProviderTimeoutError,
    UpstreamError,
)
from cv_tailor.models.generation import (
    ContextClass,
    GenerationParams,
    ImageAttachment,
    ProviderConfig,
    ProviderId,
)

PNG = ImageAttachment(mime_type="image/png", data=b"\x89PNG")


def _config(provider_id: ProviderId, **overrides) -> ProviderConfig:
    values = {
        ProviderId.OLLAMA: dict(model="llama3", base_endpoint="http://localhost:11434"),
        ProviderId.OPENAI: dict(
            model="gpt-4", base_endpoint="https://api.openai.com/v1", credentials="sk-test",
            supports_image_attachment=True,
        ),
        ProviderId.GROK: dict(model="grok-beta", base_endpoint="https://api.x.ai/v1", credentials="xai-test"),
        ProviderId.GEMINI: dict(
            model="gemini-pro", base_endpoint="https://generativelanguage.googleapis.com/v1beta",
            credentials="g-test", supports_image_attachment=True,
        ),
        ProviderId.ANTHROPIC: dict(
            model="claude-3-opus-20240229", base_endpoint="https://api.anthropic.com",
            credentials="sk-ant-test", supports_image_attachment=True,
        ),
        ProviderId.LOCAL_DEVICE: dict(model="llama3.2", context_class=ContextClass.CONSTRAINED),
    }[provider_id]
    return ProviderConfig(provider_id=provider_id, **{**values, **overrides})


def _anthropic_message(text: str) -> dict:
    return {
        "id": "msg_1",
        "type": "message",
        "role": "assistant",
        "model": "claude-3-opus-20240229",
        "content": [{"type": "text", "text": text}],
        "stop_reason": "end_turn",
        "stop_sequence": None,
        "usage": {"input_tokens": 10, "output_tokens": 5},
    }


class TestProviderErrorMessage:
    def test_string_error(self):
        assert provider_error_message({"error": "out of memory"}) == "out of memory"

    def test_nested_error_message(self):
        assert provider_error_message({"error": {"message": "Invalid key"}}) == "Invalid key"

    def test_top_level_message(self):
        assert provider_error_message({"message": "quota"}) == "quota"

    def test_no_message(self):
        assert provider_error_message(None) is None
        assert provider_error_message({"detail": 1}) is None


class TestOllamaProvider:
    @pytest.mark.asyncio
    async def test_request_shape_and_text(self, make_transport):
        transport = make_transport(lambda request: httpx.Response(200, json={"response": "hello"}))
        provider = OllamaProvider(_config(ProviderId.OLLAMA), DispatchConfig(), transport=transport)

        text = await provider.generate("prompt", GenerationParams(temperature=0.2, max_tokens=100, system="sys"))

        assert text == "hello"
        request = transport.requests[0]
        assert str(request.url) == "http://localhost:11434/api/generate"
        assert transport.json_body() == {
            "model": "llama3",
            "prompt": "prompt",
            "stream": False,
            "options": {"temperature": 0.2, "num_predict": 100},
            "system": "sys",
            "format": "json",
        }

    @pytest.mark.asyncio
    async def test_plain_text_mode_omits_format(self, make_transport):
        transport = make_transport(lambda request: httpx.Response(200, json={"response": "letter"}))
        provider = OllamaProvider(_config(ProviderId.OLLAMA), DispatchConfig(), transport=transport)
        await provider.generate("prompt", GenerationParams(expect_json=False))
        assert "format" not in transport.json_body()

    @pytest.mark.asyncio
    async def test_missing_model_hint(self, make_transport):
        transport = make_transport(
            lambda request: httpx.Response(404, json={"error": "model 'llama3' not found"})
        )
        provider = OllamaProvider(_config(ProviderId.OLLAMA), DispatchConfig(), transport=transport)
        with pytest.raises(UpstreamError, match="ollama list") as exc_info:
            await provider.generate("prompt", GenerationParams())
        assert exc_info.value.status_code == 404
        assert "model 'llama3' not found" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_bare_server_error_hint(self, make_transport):
        transport = make_transport(lambda request: httpx.Response(500, text=""))
        provider = OllamaProvider(_config(ProviderId.OLLAMA), DispatchConfig(), transport=transport)
        with pytest.raises(UpstreamError, match="run out of memory"):
            await provider.generate("prompt", GenerationParams())

    @pytest.mark.asyncio
    async def test_connect_error_names_local_service(self, make_transport):
        def refuse(request):
            raise httpx.ConnectError("Connection refused")

        provider = OllamaProvider(
            _config(ProviderId.OLLAMA), DispatchConfig(), transport=make_transport(refuse)
        )
        with pytest.raises(ProviderConnectionError, match="is the local Ollama service running"):
            await provider.generate("prompt", GenerationParams())

    @pytest.mark.asyncio
    async def test_read_timeout(self, make_transport):
        def slow(request):
            raise httpx.ReadTimeout("timed out")

        provider = OllamaProvider(_config(ProviderId.OLLAMA), DispatchConfig(), transport=make_transport(slow))
        with pytest.raises(ProviderTimeoutError):
            await provider.generate("prompt", GenerationParams())

    @pytest.mark.asyncio
    async def test_connect_timeout_is_connection_error(self, make_transport):
        def unreachable(request):
            raise httpx.ConnectTimeout("connect timed out")

        provider = OllamaProvider(
            _config(ProviderId.OLLAMA), DispatchConfig(), transport=make_transport(unreachable)
        )
        with pytest.raises(ProviderConnectionError):
            await provider.generate("prompt", GenerationParams())

    @pytest.mark.asyncio
    async def test_empty_connect_error_names_exception(self, make_transport):
        def refuse(request):
            raise httpx.ConnectError("")

        provider = OllamaProvider(
            _config(ProviderId.OLLAMA), DispatchConfig(), transport=make_transport(refuse)
        )
        with pytest.raises(ProviderConnectionError, match="Ollama connection error: ConnectError"):
            await provider.generate("prompt", GenerationParams())


class TestOpenAIProvider:
    @pytest.mark.asyncio
    async def test_request_shape_and_text(self, make_transport):
        transport = make_transport(
            lambda request: httpx.Response(200, json={"choices": [{"message": {"content": "{}"}}]})
        )
        provider = OpenAIProvider(_config(ProviderId.OPENAI), DispatchConfig(), transport=transport)

        text = await provider.generate("prompt", GenerationParams(system="sys"))

        assert text == "{}"
        request = transport.requests[0]
        assert str(request.url) == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        body = transport.json_body()
        assert body["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "prompt"},
        ]
        assert body["response_format"] == {"type": "json_object"}
        assert body["max_tokens"] == 8000

    @pytest.mark.asyncio
    async def test_image_sent_as_data_url(self, make_transport):
        transport = make_transport(
            lambda request: httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})
        )
        provider = OpenAIProvider(_config(ProviderId.OPENAI), DispatchConfig(), transport=transport)
        await provider.generate("prompt", GenerationParams(), PNG)

        body = transport.json_body()
        content = body["messages"][-1]["content"]
        assert content[0] == {"type": "text", "text": "prompt"}
        assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")
        assert "response_format" not in body

    @pytest.mark.asyncio
    async def test_malformed_envelope(self, make_transport):
        transport = make_transport(lambda request: httpx.Response(200, json={"choices": []}))
        provider = OpenAIProvider(_config(ProviderId.OPENAI), DispatchConfig(), transport=transport)
        with pytest.raises(MalformedResponseError, match="Invalid OpenAI response format"):
            await provider.generate("prompt", GenerationParams())

    @pytest.mark.asyncio
    async def test_status_error_detail(self, make_transport):
        transport = make_transport(
            lambda request: httpx.Response(401, json={"error": {"message": "Incorrect API key"}})
        )
        provider = OpenAIProvider(_config(ProviderId.OPENAI), DispatchConfig(), transport=transport)
        with pytest.raises(UpstreamError) as exc_info:
            await provider.generate("prompt", GenerationParams())
        assert exc_info.value.message == "OpenAI API error: HTTP 401 - Incorrect API key"
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        provider = OpenAIProvider(_config(ProviderId.OPENAI, credentials=None), DispatchConfig())
        with pytest.raises(ConfigurationError):
            await provider.generate("prompt", GenerationParams())


class TestGrokProvider:
    @pytest.mark.asyncio
    async def test_openai_dialect_without_json_mode_or_image(self, make_transport):
        transport = make_transport(
            lambda request: httpx.Response(200, json={"choices": [{"message": {"content": "hi"}}]})
        )
        provider = GrokProvider(_config(ProviderId.GROK), DispatchConfig(), transport=transport)

        assert await provider.generate("prompt", GenerationParams(), PNG) == "hi"
        body = transport.json_body()
        assert str(transport.requests[0].url) == "https://api.x.ai/v1/chat/completions"
        assert "response_format" not in body
        assert body["messages"][-1]["content"] == "prompt"


class TestGeminiProvider:
    @pytest.mark.asyncio
    async def test_request_shape_and_text(self, make_transport):
        transport = make_transport(
            lambda request: httpx.Response(
                200, json={"candidates": [{"content": {"parts": [{"text": "gemini says"}]}}]}
            )
        )
        provider = GeminiProvider(_config(ProviderId.GEMINI), DispatchConfig(), transport=transport)

        text = await provider.generate("prompt", GenerationParams(max_tokens=50, system="sys"), PNG)

        assert text == "gemini says"
        request = transport.requests[0]
        assert request.url.path.endswith("/models/gemini-pro:generateContent")
        assert request.headers["x-goog-api-key"] == "g-test"
        body = transport.json_body()
        assert body["generationConfig"]["maxOutputTokens"] == 50
        assert body["contents"][0]["parts"][1]["inline_data"]["mime_type"] == "image/png"
        assert body["systemInstruction"] == {"parts": [{"text": "sys"}]}

    @pytest.mark.asyncio
    async def test_blocked_response_is_malformed(self, make_transport):
        transport = make_transport(
            lambda request: httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})
        )
        provider = GeminiProvider(_config(ProviderId.GEMINI), DispatchConfig(), transport=transport)
        with pytest.raises(MalformedResponseError):
            await provider.generate("prompt", GenerationParams())


class TestAnthropicProvider:
    @pytest.mark.asyncio
    async def test_messages_call(self, make_transport):
        transport = make_transport(lambda request: httpx.Response(200, json=_anthropic_message("claude says")))
        provider = AnthropicProvider(_config(ProviderId.ANTHROPIC), DispatchConfig(), transport=transport)

        text = await provider.generate("prompt", GenerationParams(system="sys", max_tokens=300))

        assert text == "claude says"
        request = transport.requests[0]
        assert request.url.path == "/v1/messages"
        assert request.headers["x-api-key"] == "sk-ant-test"
        body = transport.json_body()
        assert body["system"] == "sys"
        assert body["max_tokens"] == 300
        assert body["messages"][0]["content"][0] == {"type": "text", "text": "prompt"}

    @pytest.mark.asyncio
    async def test_status_error(self, make_transport):
        transport = make_transport(
            lambda request: httpx.Response(
                400,
                json={"type": "error", "error": {"type": "invalid_request_error", "message": "bad model"}},
            )
        )
        provider = AnthropicProvider(_config(ProviderId.ANTHROPIC), DispatchConfig(), transport=transport)
        with pytest.raises(UpstreamError, match="bad model") as exc_info:
            await provider.generate("prompt", GenerationParams())
        assert exc_info.value.status_code == 400
        # no retries
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_connection_error(self, make_transport):
        def refuse(request):
            raise httpx.ConnectError("Connection refused")

        provider = AnthropicProvider(
            _config(ProviderId.ANTHROPIC), DispatchConfig(), transport=make_transport(refuse)
        )
        with pytest.raises(ProviderConnectionError):
            await provider.generate("prompt", GenerationParams())


class TestLocalDeviceProvider:
    def test_deferred_contract(self):
        provider = LocalDeviceProvider(_config(ProviderId.LOCAL_DEVICE), DispatchConfig())
        params = GenerationParams(temperature=0.1)
        contract = provider.deferred_contract("the prompt", params)
        assert provider.client_deferred
        assert contract.prompt == "the prompt"
        assert contract.model_id == "llama3.2"
        assert contract.model_class is ContextClass.CONSTRAINED
        assert contract.generation_params == params

    @pytest.mark.asyncio
    async def test_cannot_dispatch(self):
        provider = LocalDeviceProvider(_config(ProviderId.LOCAL_DEVICE), DispatchConfig())
        with pytest.raises(ConfigurationError):
            await provider.generate("prompt", GenerationParams())


class TestBuildProvider:
    @pytest.mark.parametrize(
        "provider_id, cls",
        [
            (ProviderId.OLLAMA, OllamaProvider),
            (ProviderId.OPENAI, OpenAIProvider),
            (ProviderId.GROK, GrokProvider),
            (ProviderId.GEMINI, GeminiProvider),
            (ProviderId.ANTHROPIC, AnthropicProvider),
            (ProviderId.LOCAL_DEVICE, LocalDeviceProvider),
        ],
    )
    def test_variant_per_provider(self, provider_id, cls):
        provider = build_provider(_config(provider_id))
        assert type(provider) is cls
        assert provider.client_deferred is (provider_id is ProviderId.LOCAL_DEVICE)
