"""Application configuration loaded from config.yaml and the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass(frozen=True)
class ProviderDefaults:
    model: str
    base_url: str = ""
    api_key_env: str | None = None  # env var holding the process-wide key
    model_env: str | None = None


def _default_providers() -> dict[str, ProviderDefaults]:
    return {
        "ollama": ProviderDefaults(
            model="llama3:latest",
            base_url="http://localhost:11434",
            model_env="OLLAMA_MODEL",
        ),
        "openai": ProviderDefaults(
            model="gpt-4-turbo-preview",
            base_url="https://api.openai.com/v1",
            api_key_env="OPENAI_API_KEY",
            model_env="OPENAI_MODEL",
        ),
        "anthropic": ProviderDefaults(
            model="claude-3-opus-20240229",
            base_url="https://api.anthropic.com",
            api_key_env="ANTHROPIC_API_KEY",
            model_env="ANTHROPIC_MODEL",
        ),
        "gemini": ProviderDefaults(
            model="gemini-pro",
            base_url="https://generativelanguage.googleapis.com/v1beta",
            api_key_env="GEMINI_API_KEY",
            model_env="GEMINI_MODEL",
        ),
        "grok": ProviderDefaults(
            model="grok-beta",
            base_url="https://api.x.ai/v1",
            api_key_env="GROK_API_KEY",
            model_env="GROK_MODEL",
        ),
        "local-device": ProviderDefaults(model="llama3.2"),
    }


@dataclass(frozen=True)
class DispatchConfig:
    timeout: float = 180.0  # total call ceiling; local models can be slow
    connect_timeout: float = 10.0


@dataclass(frozen=True)
class GenerationConfig:
    rewrite_temperature: float = 0.7
    rewrite_max_tokens: int = 8000
    assessment_temperature: float = 0.3
    assessment_max_tokens: int = 2000
    cover_letter_temperature: float = 0.8
    cover_letter_max_tokens: int = 2000
    keywords_temperature: float = 0.2
    keywords_max_tokens: int = 500


@dataclass(frozen=True)
class PromptConfig:
    context_chars: int = 2000
    summary_chars: int = 500
    work_entries: int = 3
    work_description_chars: int = 300
    items_per_category: int = 3
    item_chars: int = 150
    skills: int = 20
    custom_instruction_chars: int = 500


@dataclass(frozen=True)
class StoreConfig:
    db_path: str = "~/.cv-tailor/cv.db"

    @property
    def resolved_db_path(self) -> Path:
        return Path(self.db_path).expanduser()


@dataclass(frozen=True)
class AppConfig:
    default_provider: str = "ollama"
    providers: dict[str, ProviderDefaults] = field(default_factory=_default_providers)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    prompt: PromptConfig = field(default_factory=PromptConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    def provider_defaults(self, provider_id: str) -> ProviderDefaults:
        return self.providers[provider_id]


def _load_providers(raw: dict) -> dict[str, ProviderDefaults]:
    providers = _default_providers()
    for name, overrides in (raw or {}).items():
        base = providers.get(name)
        merged = {**base.__dict__, **overrides} if base else overrides
        providers[name] = ProviderDefaults(**merged)
    return providers


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load config from YAML file, falling back to defaults.

    ``AI_SERVICE`` in the environment overrides the configured default provider.
    """
    if path is None:
        # Look for config.yaml relative to the project root
        candidates = [
            Path.cwd() / "config.yaml",
            Path(__file__).resolve().parent.parent.parent / "config.yaml",
        ]
        for c in candidates:
            if c.exists():
                path = c
                break

    raw: dict = {}
    if path is not None:
        p = Path(path)
        if p.exists():
            raw = yaml.safe_load(p.read_text()) or {}

    return AppConfig(
        default_provider=os.environ.get("AI_SERVICE") or raw.get("default_provider", "ollama"),
        providers=_load_providers(raw.get("providers", {})),
        dispatch=DispatchConfig(**raw.get("dispatch", {})),
        generation=GenerationConfig(**raw.get("generation", {})),
        prompt=PromptConfig(**raw.get("prompt", {})),
        store=StoreConfig(**raw.get("store", {})),
    )
