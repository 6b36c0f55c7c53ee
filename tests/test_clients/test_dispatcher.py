"""Tests for ProviderDispatcher."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from cv_tailor.clients.dispatcher import IMAGE_OMITTED_NOTE, ProviderDispatcher
from cv_tailor.clients.providers import OllamaProvider, OpenAIProvider, Provider
from cv_tailor.config import DispatchConfig
from cv_tailor.models.generation import GenerationParams, ImageAttachment, ProviderConfig, ProviderId


class FakeProvider(Provider):
    label = "Fake"

    def __init__(self, config, dispatch, delay: float = 0.0):
        super().__init__(config, dispatch)
        self.delay = delay
        self.calls: list[tuple[str, ImageAttachment | None]] = []

    async def generate(self, prompt, params, image=None):
        self.calls.append((prompt, image))
        await asyncio.sleep(self.delay)
        return "generated"


def _ollama(transport) -> OllamaProvider:
    config = ProviderConfig(
        provider_id=ProviderId.OLLAMA, model="llama3", base_endpoint="http://localhost:11434"
    )
    return OllamaProvider(config, DispatchConfig(), transport=transport)


class TestDispatch:
    @pytest.mark.asyncio
    async def test_success(self, make_transport):
        transport = make_transport(lambda request: httpx.Response(200, json={"response": "{}"}))
        result = await ProviderDispatcher(_ollama(transport)).dispatch("prompt", GenerationParams())
        assert result.success
        assert result.text == "{}"
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_upstream_error_text_kept_verbatim(self, make_transport):
        transport = make_transport(lambda request: httpx.Response(500, json={"error": "out of memory"}))
        result = await ProviderDispatcher(_ollama(transport)).dispatch("prompt", GenerationParams())
        assert not result.success
        assert result.error_kind == "UpstreamError"
        assert "out of memory" in result.message
        # never retried
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_connection_refused(self, make_transport):
        def refuse(request):
            raise httpx.ConnectError("Connection refused")

        result = await ProviderDispatcher(_ollama(make_transport(refuse))).dispatch(
            "prompt", GenerationParams()
        )
        assert result.error_kind == "ConnectionError"
        assert "is the local Ollama service running at http://localhost:11434" in result.message

    @pytest.mark.asyncio
    async def test_read_timeout(self, make_transport):
        def slow(request):
            raise httpx.ReadTimeout("timed out")

        result = await ProviderDispatcher(_ollama(make_transport(slow))).dispatch(
            "prompt", GenerationParams()
        )
        assert result.error_kind == "TimeoutError"

    @pytest.mark.asyncio
    async def test_total_timeout_enforced(self):
        config = ProviderConfig(provider_id=ProviderId.OLLAMA, model="m")
        provider = FakeProvider(config, DispatchConfig(timeout=0.01), delay=1.0)
        result = await ProviderDispatcher(provider).dispatch("prompt", GenerationParams())
        assert result.error_kind == "TimeoutError"
        assert "timed out after 0.01 seconds" in result.message

    @pytest.mark.asyncio
    async def test_configuration_error_classified(self):
        config = ProviderConfig(provider_id=ProviderId.OPENAI, model="gpt-4")
        result = await ProviderDispatcher(OpenAIProvider(config, DispatchConfig())).dispatch(
            "prompt", GenerationParams()
        )
        assert result.error_kind == "ConfigurationError"


class TestImageDegradation:
    @pytest.mark.asyncio
    async def test_image_dropped_with_note(self):
        config = ProviderConfig(provider_id=ProviderId.OLLAMA, model="m", supports_image_attachment=False)
        provider = FakeProvider(config, DispatchConfig())
        image = ImageAttachment(mime_type="image/png", data=b"img")

        result = await ProviderDispatcher(provider).dispatch("prompt", GenerationParams(), image)

        assert result.success
        prompt, sent_image = provider.calls[0]
        assert sent_image is None
        assert prompt == "prompt" + IMAGE_OMITTED_NOTE

    @pytest.mark.asyncio
    async def test_image_forwarded_when_supported(self):
        config = ProviderConfig(provider_id=ProviderId.OPENAI, model="m", supports_image_attachment=True)
        provider = FakeProvider(config, DispatchConfig())
        image = ImageAttachment(mime_type="image/png", data=b"img")

        await ProviderDispatcher(provider).dispatch("prompt", GenerationParams(), image)

        assert provider.calls[0] == ("prompt", image)
