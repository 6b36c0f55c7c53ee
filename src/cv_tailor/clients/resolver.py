"""Resolve which generative backend, model and credentials apply to a tenant.

Priority: user settings > organisation settings (only when the organisation has
opted in) > process-wide defaults. The first tier that names a provider wins
and its settings are used as a unit.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Protocol

from pydantic import SecretStr

from cv_tailor.config import AppConfig
from cv_tailor.errors import ConfigurationError
from cv_tailor.models.generation import (
    ConfigTier,
    ContextClass,
    ProviderConfig,
    ProviderId,
    TenantIdentity,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderTraits:
    requires_credentials: bool
    supports_image_attachment: bool
    context_class: ContextClass = ContextClass.FULL


PROVIDER_TRAITS: dict[ProviderId, ProviderTraits] = {
    ProviderId.OLLAMA: ProviderTraits(False, False),
    ProviderId.OPENAI: ProviderTraits(True, True),
    ProviderId.ANTHROPIC: ProviderTraits(True, True),
    ProviderId.GEMINI: ProviderTraits(True, True),
    ProviderId.GROK: ProviderTraits(True, False),
    ProviderId.LOCAL_DEVICE: ProviderTraits(False, False, ContextClass.CONSTRAINED),
}


@dataclass
class TierSettings:
    """AI settings stored for one tier (a user or an organisation)."""

    provider: str | None = None
    ollama_base_url: str | None = None
    ollama_model: str | None = None
    device_model: str | None = None
    encrypted_keys: dict[str, str] = field(default_factory=dict)  # provider id -> ciphertext
    ai_enabled: bool = False  # organisation opt-in; ignored for users


@dataclass
class TenantTiers:
    user: TierSettings | None = None
    organisation: TierSettings | None = None


class TenantSettingsSource(Protocol):
    def resolve_tenant_config(
        self, user_id: str, organisation_id: str | None = None
    ) -> TenantTiers: ...


class ConfigurationResolver:
    """Turns a tenant identity into exactly one ProviderConfig."""

    def __init__(
        self,
        source: TenantSettingsSource,
        decrypt: Callable[[str], str | None],
        config: AppConfig | None = None,
        env: Mapping[str, str] | None = None,
    ):
        self.source = source
        self.decrypt = decrypt
        self.config = config or AppConfig()
        self.env = os.environ if env is None else env

    def resolve(self, tenant: TenantIdentity) -> ProviderConfig:
        """Resolve the backend for one request.

        Raises:
            ConfigurationError: unknown provider, or a provider that needs
                credentials has none at any tier.
        """
        tiers = self.source.resolve_tenant_config(tenant.user_id, tenant.organisation_id)
        tier, settings = self._winning_tier(tiers)

        raw_provider = settings.provider if settings else self.config.default_provider
        try:
            provider_id = ProviderId.parse(raw_provider)
        except ValueError:
            raise ConfigurationError(f"Unknown AI service: {raw_provider}") from None

        traits = PROVIDER_TRAITS[provider_id]
        credentials = None
        if traits.requires_credentials:
            credentials = self._credentials(provider_id, tier, tiers, tenant)
            if credentials is None:
                raise ConfigurationError(
                    f"{provider_id.value} API key not configured. "
                    "Add one in your AI settings or choose another provider."
                )

        logger.info(
            "Resolved provider %s from %s tier for user %s",
            provider_id.value, tier.value, tenant.user_id,
        )
        return ProviderConfig(
            provider_id=provider_id,
            credentials=SecretStr(credentials) if credentials else None,
            model=self._model(provider_id, settings),
            base_endpoint=self._base_endpoint(provider_id, settings),
            supports_image_attachment=traits.supports_image_attachment,
            context_class=traits.context_class,
            tier=tier,
        )

    def _winning_tier(self, tiers: TenantTiers) -> tuple[ConfigTier, TierSettings | None]:
        if tiers.user and tiers.user.provider:
            return ConfigTier.USER, tiers.user
        org = tiers.organisation
        if org and org.ai_enabled and org.provider:
            return ConfigTier.ORGANISATION, org
        return ConfigTier.DEFAULT, None

    def _credentials(
        self,
        provider_id: ProviderId,
        tier: ConfigTier,
        tiers: TenantTiers,
        tenant: TenantIdentity,
    ) -> str | None:
        """Find a key for the chosen provider, starting at the winning tier."""
        candidates: list[tuple[ConfigTier, TierSettings]] = []
        if tier is ConfigTier.USER and tiers.user:
            candidates.append((ConfigTier.USER, tiers.user))
        if tier is not ConfigTier.DEFAULT and tiers.organisation and tiers.organisation.ai_enabled:
            candidates.append((ConfigTier.ORGANISATION, tiers.organisation))

        for source_tier, settings in candidates:
            ciphertext = settings.encrypted_keys.get(provider_id.value)
            if not ciphertext:
                continue
            plaintext = self.decrypt(ciphertext)
            if plaintext:
                return plaintext
            logger.error(
                "Failed to decrypt %s %s API key for user %s",
                source_tier.value, provider_id.value, tenant.user_id,
            )

        env_name = self.config.provider_defaults(provider_id.value).api_key_env
        if env_name:
            return self.env.get(env_name) or None
        return None

    def _model(self, provider_id: ProviderId, settings: TierSettings | None) -> str:
        defaults = self.config.provider_defaults(provider_id.value)
        if settings:
            if provider_id is ProviderId.OLLAMA and settings.ollama_model:
                return settings.ollama_model
            if provider_id is ProviderId.LOCAL_DEVICE and settings.device_model:
                return settings.device_model
        if defaults.model_env and self.env.get(defaults.model_env):
            return self.env[defaults.model_env]
        return defaults.model

    def _base_endpoint(self, provider_id: ProviderId, settings: TierSettings | None) -> str:
        defaults = self.config.provider_defaults(provider_id.value)
        if provider_id is ProviderId.OLLAMA:
            if settings and settings.ollama_base_url:
                return settings.ollama_base_url.rstrip("/")
            return self.env.get("OLLAMA_BASE_URL", defaults.base_url).rstrip("/")
        return defaults.base_url.rstrip("/")
