"""Premium tier: OpenAI, with an optional caller-supplied key."""

from __future__ import annotations

from llm_cascade.models import KeySource, Tier
from llm_cascade.providers.base import TierAdapter, require_credential

PREMIUM_MODEL_MAP: dict[str, str] = {
    "gpt-4o": "gpt-4o",
    "gpt-4": "gpt-4o",
    "gpt-4-turbo": "gpt-4o",
    "gpt-3.5-turbo": "gpt-3.5-turbo",
    "chatgpt-4o-latest": "chatgpt-4o-latest",
}


def map_premium_model(requested: str | None, default: str = "gpt-4o") -> str:
    """Map the caller's requested model ceiling onto a model we actually serve."""
    if not requested:
        return default
    return PREMIUM_MODEL_MAP.get(requested, default)


class PremiumTierAdapter(TierAdapter):
    tier = Tier.PREMIUM
    provider = "openai"

    @property
    def base_url(self) -> str:
        return self.config.premium_base_url

    @property
    def max_tokens(self) -> int:
        return self.config.premium_max_tokens

    def resolve_model(self, requested: str | None) -> str:
        return map_premium_model(requested, self.config.premium_default_model)

    def resolve_credential(self, override: str | None) -> tuple[str, KeySource]:
        """Caller key wins over the system key. Only the source is ever recorded."""
        if override:
            return override, KeySource.USER_PROVIDED
        env_var = self.config.premium_key_env
        key = require_credential(self.tier.value, self.config.credential(env_var), env_var)
        return key, KeySource.SYSTEM_DEFAULT
