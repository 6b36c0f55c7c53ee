"""Provider dispatcher: one upstream call, one classified result."""

from __future__ import annotations

import asyncio
import logging

from cv_tailor.clients.providers import Provider
from cv_tailor.config import DispatchConfig
from cv_tailor.errors import CvTailorError, ProviderTimeoutError
from cv_tailor.models.generation import DispatchResult, GenerationParams, ImageAttachment

logger = logging.getLogger(__name__)

IMAGE_OMITTED_NOTE = (
    "\n\n[Note: An image attachment was provided but omitted because this "
    "provider does not support images.]"
)


class ProviderDispatcher:
    """Sends a prompt to the resolved provider.

    Never retries and never raises for upstream failures: every outcome comes
    back as a DispatchResult carrying either the text or an error kind.
    """

    def __init__(self, provider: Provider, dispatch: DispatchConfig | None = None):
        self.provider = provider
        self.dispatch_config = dispatch or provider.dispatch_config

    async def dispatch(
        self,
        prompt: str,
        params: GenerationParams,
        image: ImageAttachment | None = None,
    ) -> DispatchResult:
        if image is not None and not self.provider.supports_image_attachment:
            logger.info("%s does not accept images, sending text only", self.provider.label)
            prompt += IMAGE_OMITTED_NOTE
            image = None

        try:
            text = await asyncio.wait_for(
                self.provider.generate(prompt, params, image),
                timeout=self.dispatch_config.timeout,
            )
        except asyncio.TimeoutError:
            error = ProviderTimeoutError(
                f"{self.provider.label} request timed out after "
                f"{self.dispatch_config.timeout:g} seconds"
            )
            logger.warning(error.message)
            return DispatchResult.failed(error.kind, error.message)
        except CvTailorError as e:
            logger.warning("%s dispatch failed (%s): %s", self.provider.label, e.kind, e.message)
            return DispatchResult.failed(e.kind, e.message)

        logger.info("%s returned %d chars", self.provider.label, len(text))
        return DispatchResult.ok(text)
