"""Execution location: decide whether a prompt runs here or on the caller's device."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from cv_tailor.clients.dispatcher import ProviderDispatcher
from cv_tailor.clients.providers import build_provider
from cv_tailor.clients.resolver import ConfigurationResolver
from cv_tailor.config import AppConfig
from cv_tailor.errors import ConfigurationError
from cv_tailor.models.generation import (
    ContextClass,
    GenerationParams,
    GenerationResult,
    GenerationStatus,
    ImageAttachment,
    TenantIdentity,
)

default_logger = logging.getLogger(__name__)


@dataclass
class PhaseOne:
    """Either model text to normalize, or a terminal Deferred/Failed result."""

    text: str | None = None
    terminal: GenerationResult | None = None


class ExecutionController:
    """Resolves the backend, then defers to the device or dispatches once."""

    def __init__(
        self,
        resolver: ConfigurationResolver,
        config: AppConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ):
        self.resolver = resolver
        self.config = config or resolver.config
        self.transport = transport
        self.logger = logger or default_logger

    async def run(
        self,
        tenant: TenantIdentity,
        build_prompt: Callable[[ContextClass], str],
        params: GenerationParams,
        *,
        image: ImageAttachment | None = None,
        force_server: bool = False,
    ) -> PhaseOne:
        try:
            provider_config = self.resolver.resolve(tenant)
        except ConfigurationError as e:
            self.logger.warning("Configuration failed for user %s: %s", tenant.user_id, e.message)
            return PhaseOne(terminal=GenerationResult.failure(e))

        provider = build_provider(provider_config, self.config.dispatch, transport=self.transport)
        prompt = build_prompt(provider_config.context_class)

        if provider.client_deferred:
            if force_server:
                error = ConfigurationError(
                    "On-device AI is selected but this operation must run on the server. "
                    "Configure a server-side AI provider in your settings."
                )
                return PhaseOne(terminal=GenerationResult.failure(error))
            self.logger.info(
                "Deferring execution to the caller's device (model %s)", provider_config.model
            )
            return PhaseOne(
                terminal=GenerationResult(
                    status=GenerationStatus.DEFERRED,
                    deferred=provider.deferred_contract(prompt, params),
                )
            )

        dispatched = await ProviderDispatcher(provider, self.config.dispatch).dispatch(
            prompt, params, image
        )
        if not dispatched.success:
            return PhaseOne(
                terminal=GenerationResult(
                    status=GenerationStatus.FAILED,
                    error_kind=dispatched.error_kind,
                    error_message=dispatched.message,
                )
            )
        return PhaseOne(text=dispatched.text)
