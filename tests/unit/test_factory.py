"""
Unit tests for AgentFactory and AgentSettings.

Tests verify:
- Profile loading and validation
- Section values reach the wired components
- Provider construction from the llm section
- Settings from environment variables
"""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from adaptive_agent.application.factory import AgentFactory
from adaptive_agent.application.settings import AgentSettings
from adaptive_agent.core.domain.agent import AdaptiveAgent
from adaptive_agent.infrastructure.llm.litellm_provider import LiteLLMProvider

REPO_CONFIGS = Path(__file__).resolve().parents[2] / "configs"

PROFILE = """
agent:
  max_retries: 1
  enable_learning: false
quality:
  enabled_checks: [syntax_validation]
  parallel_execution: false
recovery:
  cooldown_seconds: 5
  fallback_mode: chat
memory:
  max_entries_per_session: 10
  learning_capacity: 20
llm:
  config_path: llm.yaml
  timeout: 12
"""

LLM_CONFIG = """
models:
  main: gpt-4.1
"""


@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "test.yaml").write_text(PROFILE, encoding="utf-8")
    (tmp_path / "llm.yaml").write_text(LLM_CONFIG, encoding="utf-8")
    return tmp_path


class TestAgentFactory:
    """Test suite for AgentFactory."""

    def test_factory_initialization(self):
        """Test factory initializes with config directory."""
        factory = AgentFactory(config_dir="configs")
        assert factory.config_dir == Path("configs")

    def test_profile_not_found(self, tmp_path):
        """Test error when profile not found."""
        factory = AgentFactory(config_dir=str(tmp_path))
        with pytest.raises(FileNotFoundError):
            factory.create_agent(profile="missing", provider=AsyncMock())

    def test_profile_values_are_applied(self, config_dir):
        """Test profile sections configure the wired components."""
        factory = AgentFactory(config_dir=str(config_dir))

        agent = factory.create_agent(profile="test", provider=AsyncMock(), session_id="s1")

        assert isinstance(agent, AdaptiveAgent)
        assert agent.config.max_retries == 1
        assert agent.config.enable_learning is False
        assert agent.config.session_id == "s1"
        assert agent.quality.get_config().enabled_checks == ["syntax_validation"]
        assert agent.quality.get_config().parallel_execution is False
        assert agent.execution.fallback_mode == "chat"
        assert agent.memory.max_entries_per_session == 10
        assert agent.learning_store.capacity == 20
        assert agent.quality.monitor is agent.monitor
        assert agent.recovery.monitor is agent.monitor
        assert [s["id"] for s in agent.get_active_sessions()] == ["s1"]

    def test_provider_built_from_llm_section(self, config_dir):
        """Test a LiteLLMProvider is created relative to the config directory."""
        factory = AgentFactory(config_dir=str(config_dir))

        agent = factory.create_agent(profile="test")

        provider = agent.execution.provider
        assert isinstance(provider, LiteLLMProvider)
        assert provider.timeout == 12
        assert provider.resolve_model("code") == "gpt-4.1"

    def test_invalid_section(self, tmp_path):
        """Test invalid section values are reported as ValueError."""
        (tmp_path / "bad.yaml").write_text("agent:\n  max_retries: -2\n", encoding="utf-8")
        factory = AgentFactory(config_dir=str(tmp_path))

        with pytest.raises(ValueError, match="agent"):
            factory.create_agent(profile="bad", provider=AsyncMock())

    @pytest.mark.parametrize(
        "section",
        [
            "monitoring:\n  max_metrix: 10\n",
            "memory:\n  learning_capacity: 0\n",
            "recovery:\n  cooldown_seconds: soon\n",
            "llm:\n  - not a mapping\n",
        ],
    )
    def test_invalid_component_sections(self, tmp_path, section):
        """Test unknown keys and bad values in component sections raise ValueError."""
        (tmp_path / "bad.yaml").write_text(section, encoding="utf-8")
        factory = AgentFactory(config_dir=str(tmp_path))

        with pytest.raises(ValueError, match="Invalid"):
            factory.create_agent(profile="bad")

    def test_repository_dev_profile_loads(self):
        """Test the shipped dev profile builds an agent."""
        factory = AgentFactory(config_dir=str(REPO_CONFIGS))

        agent = factory.create_agent(profile="dev")

        assert agent.config.max_retries == 3
        assert agent.execution.fallback_mode == "chat"


class TestAgentSettings:
    """Test suite for AgentSettings."""

    def test_defaults(self, monkeypatch):
        """Test default settings."""
        for name in ("CONFIG_DIR", "PROFILE", "LOG_LEVEL", "JSON_LOGS"):
            monkeypatch.delenv(f"ADAPTIVE_AGENT_{name}", raising=False)

        settings = AgentSettings(_env_file=None)

        assert settings.config_dir == "configs"
        assert settings.profile == "dev"
        assert settings.json_logs is False

    def test_environment_overrides(self, monkeypatch):
        """Test prefixed environment variables override defaults."""
        monkeypatch.setenv("ADAPTIVE_AGENT_PROFILE", "prod")
        monkeypatch.setenv("ADAPTIVE_AGENT_JSON_LOGS", "true")

        settings = AgentSettings(_env_file=None)

        assert settings.profile == "prod"
        assert settings.json_logs is True
