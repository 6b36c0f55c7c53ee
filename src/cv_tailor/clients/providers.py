"""Provider variants: one class per upstream wire format.

The set is closed. ``build_provider`` picks the variant once, when the
configuration is resolved, so nothing downstream branches on provider names.
"""

from __future__ import annotations

import base64
import json
import logging
from abc import ABC, abstractmethod

import anthropic
import httpx

from cv_tailor.config import DispatchConfig
from cv_tailor.errors import (
    ConfigurationError,
    MalformedResponseError,
    ProviderConnectionError,
    ProviderTimeoutError,
    UpstreamError,
    excerpt,
)
from cv_tailor.models.generation import (
    DeferredExecution,
    GenerationParams,
    ImageAttachment,
    ProviderConfig,
    ProviderId,
)

logger = logging.getLogger(__name__)


def provider_error_message(body) -> str | None:
    """Pull a human-readable message out of a provider error body."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, str) and error:
            return error
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(body.get("message"), str):
            return body["message"]
    return None


def _dig(data, *path):
    """Follow a key/index path through a decoded envelope; None if absent."""
    current = data
    for step in path:
        try:
            current = current[step]
        except (KeyError, IndexError, TypeError):
            return None
    return current


class Provider(ABC):
    """One upstream backend."""

    label: str = "AI"
    local_service = False  # unreachable usually means the user's daemon is not running

    def __init__(self, config: ProviderConfig, dispatch: DispatchConfig):
        self.config = config
        self.dispatch_config = dispatch

    @property
    def supports_image_attachment(self) -> bool:
        return self.config.supports_image_attachment

    @property
    def client_deferred(self) -> bool:
        return False

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        params: GenerationParams,
        image: ImageAttachment | None = None,
    ) -> str:
        """Return the generated text or raise a CvTailorError subclass."""

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.dispatch_config.timeout, connect=self.dispatch_config.connect_timeout)

    def _api_key(self) -> str:
        if self.config.credentials is None:
            raise ConfigurationError(f"{self.label} API key not configured")
        return self.config.credentials.get_secret_value()


class HttpProvider(Provider):
    """Generic JSON-over-POST provider built on httpx."""

    def __init__(
        self,
        config: ProviderConfig,
        dispatch: DispatchConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(config, dispatch)
        self.transport = transport

    @abstractmethod
    def build_request(
        self, prompt: str, params: GenerationParams, image: ImageAttachment | None
    ) -> tuple[str, dict, dict]:
        """Return (url, headers, json body)."""

    @abstractmethod
    def extract_text(self, data) -> str | None:
        """Return the generated text from a decoded envelope, None if absent."""

    def describe_status_error(self, status_code: int, body) -> str:
        message = f"{self.label} API error: HTTP {status_code}"
        detail = provider_error_message(body)
        if detail:
            message += f" - {detail}"
        return message

    async def generate(
        self,
        prompt: str,
        params: GenerationParams,
        image: ImageAttachment | None = None,
    ) -> str:
        url, headers, body = self.build_request(prompt, params, image)
        headers = {"Content-Type": "application/json", **headers}
        logger.debug("%s call: model=%s", self.label, self.config.model)

        try:
            async with httpx.AsyncClient(timeout=self._timeout(), transport=self.transport) as client:
                response = await client.post(url, headers=headers, json=body)
        except httpx.ConnectTimeout as exc:
            raise ProviderConnectionError(self._connection_message(exc)) from exc
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(
                f"{self.label} request timed out. The model may be taking too long to respond."
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderConnectionError(self._connection_message(exc)) from exc

        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            data = None

        if not response.is_success:
            logger.warning(
                "%s API error (HTTP %d): %s",
                self.label, response.status_code, excerpt(response.text),
            )
            raise UpstreamError(
                self.describe_status_error(response.status_code, data),
                status_code=response.status_code,
            )

        text = self.extract_text(data)
        if not isinstance(text, str):
            raise MalformedResponseError(
                f"Invalid {self.label} response format. Response: {excerpt(response.text)}"
            )
        return text

    def _connection_message(self, exc: Exception) -> str:
        message = f"{self.label} connection error: {str(exc) or type(exc).__name__}"
        if self.local_service:
            message += f" (is the local {self.label} service running at {self.config.base_endpoint}?)"
        return message


class OllamaProvider(HttpProvider):
    label = "Ollama"
    local_service = True

    def build_request(self, prompt, params, image):
        body = {
            "model": self.config.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": params.temperature,
                "num_predict": params.max_tokens,
            },
        }
        if params.system:
            body["system"] = params.system
        if params.expect_json:
            body["format"] = "json"
        return f"{self.config.base_endpoint}/api/generate", {}, body

    def extract_text(self, data):
        return _dig(data, "response")

    def describe_status_error(self, status_code, body):
        message = super().describe_status_error(status_code, body)
        detail = provider_error_message(body)
        if status_code == 404 and detail and "model" in detail:
            message += (
                f". Make sure the model name matches one installed in Ollama "
                f"(currently {self.config.model!r}; see `ollama list`)."
            )
        elif status_code == 500 and not detail:
            message += " - Server error. Ollama may have run out of memory; try a smaller model."
        return message


class OpenAIProvider(HttpProvider):
    label = "OpenAI"

    def build_request(self, prompt, params, image):
        content: str | list = prompt
        if image is not None:
            encoded = base64.b64encode(image.data).decode("ascii")
            content = [
                {"type": "text", "text": prompt},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{image.mime_type};base64,{encoded}"},
                },
            ]
        messages = []
        if params.system:
            messages.append({"role": "system", "content": params.system})
        messages.append({"role": "user", "content": content})

        body = {
            "model": self.config.model,
            "messages": messages,
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
        }
        if params.expect_json and image is None:
            body["response_format"] = {"type": "json_object"}
        headers = {"Authorization": f"Bearer {self._api_key()}"}
        return f"{self.config.base_endpoint}/chat/completions", headers, body

    def extract_text(self, data):
        return _dig(data, "choices", 0, "message", "content")


class GrokProvider(OpenAIProvider):
    """xAI speaks the OpenAI chat-completions dialect."""

    label = "Grok"

    def build_request(self, prompt, params, image):
        url, headers, body = super().build_request(prompt, params, None)
        body.pop("response_format", None)
        return url, headers, body


class GeminiProvider(HttpProvider):
    label = "Gemini"

    def build_request(self, prompt, params, image):
        parts: list[dict] = [{"text": prompt}]
        if image is not None:
            parts.append({
                "inline_data": {
                    "mime_type": image.mime_type,
                    "data": base64.b64encode(image.data).decode("ascii"),
                }
            })
        body: dict = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "temperature": params.temperature,
                "maxOutputTokens": params.max_tokens,
            },
        }
        if params.system:
            body["systemInstruction"] = {"parts": [{"text": params.system}]}
        url = f"{self.config.base_endpoint}/models/{self.config.model}:generateContent"
        return url, {"x-goog-api-key": self._api_key()}, body

    def extract_text(self, data):
        return _dig(data, "candidates", 0, "content", "parts", 0, "text")


class AnthropicProvider(Provider):
    """Claude via the official SDK, with SDK retries switched off."""

    label = "Anthropic"

    def __init__(
        self,
        config: ProviderConfig,
        dispatch: DispatchConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(config, dispatch)
        self.transport = transport

    def _client(self) -> anthropic.AsyncAnthropic:
        kwargs: dict = {
            "api_key": self._api_key(),
            "timeout": self._timeout(),
            "max_retries": 0,
        }
        if self.config.base_endpoint:
            kwargs["base_url"] = self.config.base_endpoint
        if self.transport is not None:
            kwargs["http_client"] = httpx.AsyncClient(transport=self.transport, timeout=self._timeout())
        return anthropic.AsyncAnthropic(**kwargs)

    async def generate(
        self,
        prompt: str,
        params: GenerationParams,
        image: ImageAttachment | None = None,
    ) -> str:
        content: list[dict] = [{"type": "text", "text": prompt}]
        if image is not None:
            content.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.mime_type,
                    "data": base64.b64encode(image.data).decode("ascii"),
                },
            })
        kwargs: dict = {
            "model": self.config.model,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "messages": [{"role": "user", "content": content}],
        }
        if params.system:
            kwargs["system"] = params.system

        logger.debug("Anthropic call: model=%s", self.config.model)
        client = self._client()
        try:
            message = await client.messages.create(**kwargs)
        except anthropic.APITimeoutError as exc:
            raise ProviderTimeoutError(
                "Anthropic request timed out. The model may be taking too long to respond."
            ) from exc
        except anthropic.APIConnectionError as exc:
            raise ProviderConnectionError(f"Anthropic connection error: {exc}") from exc
        except anthropic.APIStatusError as exc:
            detail = provider_error_message(exc.body) or exc.message
            logger.warning("Anthropic API error (HTTP %d)", exc.status_code)
            raise UpstreamError(
                f"Anthropic API error: HTTP {exc.status_code} - {detail}",
                status_code=exc.status_code,
            ) from exc
        finally:
            await client.close()

        try:
            text = message.content[0].text
        except (AttributeError, IndexError, TypeError):
            text = None
        if not isinstance(text, str):
            raise MalformedResponseError("Invalid Anthropic response format")
        return text


class LocalDeviceProvider(Provider):
    """Inference runs on the caller's device; the server only prepares the prompt."""

    label = "Local device"

    @property
    def client_deferred(self) -> bool:
        return True

    def deferred_contract(self, prompt: str, params: GenerationParams) -> DeferredExecution:
        return DeferredExecution(
            prompt=prompt,
            model_id=self.config.model,
            model_class=self.config.context_class,
            generation_params=params,
        )

    async def generate(self, prompt, params, image=None) -> str:
        raise ConfigurationError(
            "The local-device provider executes on the caller's device and cannot be dispatched"
        )


_VARIANTS: dict[ProviderId, type[Provider]] = {
    ProviderId.OLLAMA: OllamaProvider,
    ProviderId.OPENAI: OpenAIProvider,
    ProviderId.GROK: GrokProvider,
    ProviderId.GEMINI: GeminiProvider,
    ProviderId.ANTHROPIC: AnthropicProvider,
    ProviderId.LOCAL_DEVICE: LocalDeviceProvider,
}


def build_provider(
    config: ProviderConfig,
    dispatch: DispatchConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Provider:
    """Create the provider variant for a resolved configuration."""
    dispatch = dispatch or DispatchConfig()
    cls = _VARIANTS[config.provider_id]
    if issubclass(cls, (HttpProvider, AnthropicProvider)):
        return cls(config, dispatch, transport=transport)
    return cls(config, dispatch)
