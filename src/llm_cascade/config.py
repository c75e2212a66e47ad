"""Configuration management for llm-cascade."""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Config:
    """Central configuration with path properties, model routing and thresholds."""

    base_dir: Path = field(default_factory=lambda: Path.home() / ".llm-cascade")

    # Providers (both speak the OpenAI chat/completions dialect)
    cheap_base_url: str = "https://api.groq.com/openai/v1"
    premium_base_url: str = "https://api.openai.com/v1"
    cheap_key_env: str = "GROQ_API_KEY"
    premium_key_env: str = "OPENAI_API_KEY"
    grader_key_env: str = "OPENAI_GRADER_API_KEY"

    # Models
    cheap_model: str = "llama-3.3-70b-versatile"
    premium_default_model: str = "gpt-4o"
    fast_grader_model: str = "llama-3.1-8b-instant"
    strong_grader_model: str = "gpt-4o-mini"
    baseline_provider: str = "openai"
    baseline_model: str = "gpt-4o"

    # Generation
    cheap_max_tokens: int = 1024
    premium_max_tokens: int = 4000
    temperature: float = 0.1

    # Network
    max_retries: int = 3
    provider_timeout_s: float = 30.0
    fast_grader_timeout_s: float = 3.0
    strong_grader_timeout_s: float = 30.0

    # Cascade thresholds
    fast_path_max_chars: int = 200
    compression_min_tokens: int = 32
    aggressive_compression: bool = False
    escalate_on_cheap_failure: bool = False

    # Grading
    auto_pass_query_tokens: int = 50
    auto_pass_answer_tokens: int = 40
    escalation_margin: float = 3.0
    min_grader_confidence: float = 0.6

    # Pricing cache
    pricing_ttl_s: float = 24 * 60 * 60
    pricing_cache_size: int = 512

    # Analytics
    retain_prompts: bool = False

    @property
    def db_path(self) -> Path:
        return self.base_dir / "llm-cascade.db"

    @property
    def log_dir(self) -> Path:
        return self.base_dir / "logs"

    def credential(self, env_var: str) -> str | None:
        """Read a provider credential from the environment (never cached)."""
        return os.environ.get(env_var) or None

    def grader_credential(self) -> str | None:
        """Grader key, falling back to the premium provider key."""
        return self.credential(self.grader_key_env) or self.credential(self.premium_key_env)

    def ensure_dirs(self) -> None:
        """Create directory tree if it doesn't exist."""
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)
