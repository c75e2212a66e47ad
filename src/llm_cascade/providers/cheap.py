"""Cheap tier: a fast open-weight model on Groq."""

from __future__ import annotations

from llm_cascade.models import KeySource, Tier
from llm_cascade.providers.base import TierAdapter, require_credential


class CheapTierAdapter(TierAdapter):
    tier = Tier.CHEAP
    provider = "groq"

    @property
    def base_url(self) -> str:
        return self.config.cheap_base_url

    @property
    def max_tokens(self) -> int:
        return self.config.cheap_max_tokens

    def resolve_model(self, requested: str | None) -> str:
        return requested or self.config.cheap_model

    def resolve_credential(self, override: str | None) -> tuple[str, KeySource]:
        # The cheap tier is always billed to the system key.
        env_var = self.config.cheap_key_env
        key = require_credential(self.tier.value, self.config.credential(env_var), env_var)
        return key, KeySource.SYSTEM_DEFAULT
