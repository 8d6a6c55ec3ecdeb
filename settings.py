"""Application settings loaded from environment or .env."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from concierge.utils.llm_client import LLMConfig


# Providers whose calls cannot succeed without an API key.
KEYED_PROVIDERS = ("openai", "google", "gemini")


class AppSettings(BaseSettings):
    # Optional overrides of the model chain in concierge/config/agents.yaml.
    provider: str | None = None
    model: str | None = None
    fallback_provider: str | None = None
    fallback_model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None

    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CONCIERGE_OPENAI_API_KEY", "OPENAI_API_KEY", "openai_api_key"),
    )
    # Gemini reads GOOGLE_API_KEY from the environment itself.
    google_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CONCIERGE_GOOGLE_API_KEY", "GOOGLE_API_KEY", "google_api_key"),
    )

    locale: str = "hy"
    full_context: bool = True

    gateway_url: str | None = None
    gateway_api_key: str | None = None
    gateway_timeout_seconds: float = 15.0

    model_config = SettingsConfigDict(env_file=".env", env_prefix="CONCIERGE_", extra="ignore")

    def api_key_for(self, provider: str) -> str | None:
        normalized = provider.lower()
        if normalized == "openai":
            return self.openai_api_key
        if normalized in ("google", "gemini"):
            return self.google_api_key
        return None

    def llm_configs(self, agent_config: Mapping[str, Any]) -> List[LLMConfig]:
        """
        The ordered fallback chain: agents.yaml entries with env overrides
        applied. Entries for keyed providers without a key are left out, so
        an empty list means no model is usable.
        """
        entries: List[Dict[str, Any]] = [dict(entry) for entry in agent_config.get("models") or []]
        for position, (provider, model) in enumerate(
            [(self.provider, self.model), (self.fallback_provider, self.fallback_model)]
        ):
            if not provider and not model:
                continue
            while len(entries) <= position:
                entries.append({})
            if provider:
                entries[position]["provider"] = provider
            if model:
                entries[position]["model"] = model

        configs: List[LLMConfig] = []
        for entry in entries:
            provider = str(entry.get("provider") or "openai")
            model = entry.get("model")
            if not model:
                continue
            api_key = self.api_key_for(provider)
            if provider.lower() in KEYED_PROVIDERS and not api_key:
                continue
            configs.append(
                LLMConfig(
                    provider=provider,
                    model=str(model),
                    temperature=(
                        self.temperature
                        if self.temperature is not None
                        else float(agent_config.get("temperature", 0.35))
                    ),
                    top_p=agent_config.get("top_p", 0.95),
                    max_tokens=(
                        self.max_tokens if self.max_tokens is not None else int(agent_config.get("max_tokens", 4096))
                    ),
                    api_key=api_key if provider.lower() == "openai" else None,
                )
            )
        return configs
