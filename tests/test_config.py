"""Tests for Config."""

from pathlib import Path

from llm_cascade.config import Config


class TestConfig:
    def test_default_paths(self):
        """Default base_dir is ~/.llm-cascade with correct derived paths."""
        config = Config()
        assert config.base_dir == Path.home() / ".llm-cascade"
        assert config.db_path == config.base_dir / "llm-cascade.db"
        assert config.log_dir == config.base_dir / "logs"

    def test_custom_base_dir(self, tmp_path):
        """Custom base_dir propagates to all derived paths."""
        custom = tmp_path / "custom-cascade"
        config = Config(base_dir=custom)
        assert config.db_path == custom / "llm-cascade.db"
        assert config.log_dir == custom / "logs"

    def test_ensure_dirs_creates_structure(self, tmp_path):
        """ensure_dirs creates base_dir and log_dir."""
        config = Config(base_dir=tmp_path / "new-dir")
        assert not config.base_dir.exists()
        config.ensure_dirs()
        assert config.base_dir.exists()
        assert config.log_dir.exists()

    def test_default_thresholds(self):
        """Routing thresholds default to the documented values."""
        config = Config()
        assert config.fast_path_max_chars == 200
        assert config.compression_min_tokens == 32
        assert config.escalation_margin == 3.0
        assert config.min_grader_confidence == 0.6
        assert config.max_retries == 3
        assert config.pricing_ttl_s == 24 * 60 * 60
        assert config.escalate_on_cheap_failure is False

    def test_credentials_read_from_environment(self, monkeypatch):
        """Credentials are read at call time, empty values count as missing."""
        config = Config()
        monkeypatch.setenv("GROQ_API_KEY", "gsk_abc")
        assert config.credential("GROQ_API_KEY") == "gsk_abc"
        monkeypatch.setenv("GROQ_API_KEY", "")
        assert config.credential("GROQ_API_KEY") is None

    def test_grader_credential_falls_back_to_premium_key(self, monkeypatch):
        """Grader key prefers its own variable, then the premium key."""
        config = Config()
        monkeypatch.delenv("OPENAI_GRADER_API_KEY", raising=False)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-premium")
        assert config.grader_credential() == "sk-premium"
        monkeypatch.setenv("OPENAI_GRADER_API_KEY", "sk-grader")
        assert config.grader_credential() == "sk-grader"
