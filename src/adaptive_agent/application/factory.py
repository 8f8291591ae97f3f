"""
Application Layer - Agent Factory

Builds AdaptiveAgent instances from YAML configuration profiles, wiring the
core components with infrastructure adapters.

Profile sections (all optional):
    agent:      AgentConfig fields
    quality:    QualityPipelineConfig fields
    recovery:   cooldown_seconds, fallback_mode, error_log_size
    memory:     max_entries_per_session, learning_capacity
    monitoring: max_metrics, max_alerts, slow_operation_ms
    llm:        config_path, timeout (seconds)
"""

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field

from adaptive_agent.core.domain.agent import AdaptiveAgent
from adaptive_agent.core.domain.models import AgentConfig
from adaptive_agent.core.interfaces.llm import CompletionProviderProtocol
from adaptive_agent.core.memory.learning_store import LearningStore
from adaptive_agent.core.memory.session_memory import SessionMemory
from adaptive_agent.core.quality.models import QualityPipelineConfig
from adaptive_agent.core.quality.pipeline import QualityPipeline
from adaptive_agent.core.recovery.error_recovery import ErrorRecovery
from adaptive_agent.core.recovery.strategies import default_strategies
from adaptive_agent.observability.metrics import PerformanceMonitor

KNOWN_SECTIONS = ("agent", "quality", "recovery", "memory", "monitoring", "llm")


class RecoverySection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cooldown_seconds: float = Field(default=60.0, ge=0)
    fallback_mode: str | None = None
    error_log_size: int = Field(default=100, gt=0)


class MemorySection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_entries_per_session: int = Field(default=1000, gt=0)
    learning_capacity: int = Field(default=1000, gt=0)


class MonitoringSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_metrics: int = Field(default=5000, gt=0)
    max_alerts: int = Field(default=100, gt=0)
    slow_operation_ms: float = Field(default=5000.0, gt=0)


class LLMSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    config_path: str = "llm_config.yaml"
    timeout: float | None = Field(default=None, gt=0)


class AgentFactory:
    """
    Factory for creating agents with dependency injection.

    Args:
        config_dir: Path to directory containing profile YAML files
    """

    def __init__(self, config_dir: str = "configs"):
        self.config_dir = Path(config_dir)
        self.logger = structlog.get_logger().bind(component="agent_factory")

    def create_agent(
        self,
        profile: str = "dev",
        provider: CompletionProviderProtocol | None = None,
        session_id: str | None = None,
    ) -> AdaptiveAgent:
        """
        Create an agent for a configuration profile.

        Args:
            profile: Profile name (file ``{config_dir}/{profile}.yaml``)
            provider: Completion provider override; a LiteLLMProvider is
                      built from the ``llm`` section when omitted
            session_id: Session to start on the new agent

        Returns:
            AdaptiveAgent with injected dependencies

        Raises:
            FileNotFoundError: If the profile or LLM config is missing
            ValueError: If the configuration is invalid
        """
        config = self._load_profile(profile)
        agent_config = self._section_model(AgentConfig, config, "agent")
        quality_config = self._section_model(QualityPipelineConfig, config, "quality")
        recovery_config = self._section_model(RecoverySection, config, "recovery")
        memory_config = self._section_model(MemorySection, config, "memory")
        monitoring_config = self._section_model(MonitoringSection, config, "monitoring")

        self.logger.info(
            "creating_agent",
            profile=profile,
            max_retries=agent_config.max_retries,
            quality_checks=agent_config.enable_quality_checks,
        )

        monitor = PerformanceMonitor(**monitoring_config.model_dump())
        memory = SessionMemory(max_entries_per_session=memory_config.max_entries_per_session)
        recovery = ErrorRecovery(
            strategies=default_strategies(cooldown_seconds=recovery_config.cooldown_seconds),
            monitor=monitor,
            error_log_size=recovery_config.error_log_size,
        )

        agent = AdaptiveAgent(
            provider=provider if provider is not None else self._create_provider(config, agent_config),
            config=agent_config,
            memory=memory,
            learning_store=LearningStore(capacity=memory_config.learning_capacity),
            quality=QualityPipeline(config=quality_config, monitor=monitor),
            recovery=recovery,
            monitor=monitor,
            fallback_mode=recovery_config.fallback_mode,
        )
        if session_id:
            agent.start_session(session_id)
        return agent

    def _load_profile(self, profile: str) -> dict[str, Any]:
        """
        Load configuration profile from YAML file.

        Raises:
            FileNotFoundError: If profile YAML not found
            ValueError: If the YAML is not a mapping
        """
        profile_path = self.config_dir / f"{profile}.yaml"

        if not profile_path.exists():
            self.logger.error(
                "profile_not_found",
                profile=profile,
                path=str(profile_path),
                hint="Ensure profile YAML exists in configs directory",
            )
            raise FileNotFoundError(f"Profile not found: {profile_path}")

        with open(profile_path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

        if not isinstance(config, dict):
            raise ValueError(f"Profile must be a mapping: {profile_path}")

        unknown = [key for key in config if key not in KNOWN_SECTIONS]
        if unknown:
            self.logger.warning("profile_unknown_sections", profile=profile, sections=unknown)

        self.logger.debug("profile_loaded", profile=profile, config_keys=list(config.keys()))
        return config

    @staticmethod
    def _section_model(model: Any, config: dict[str, Any], section: str) -> Any:
        try:
            return model.model_validate(config.get(section) or {})
        except ValueError as e:
            raise ValueError(f"Invalid '{section}' section: {e}") from e

    def _create_provider(
        self, config: dict[str, Any], agent_config: AgentConfig
    ) -> CompletionProviderProtocol:
        from adaptive_agent.infrastructure.llm.litellm_provider import LiteLLMProvider

        llm_config = self._section_model(LLMSection, config, "llm")
        config_path = Path(llm_config.config_path)
        if not config_path.is_absolute():
            config_path = self.config_dir / config_path

        return LiteLLMProvider(
            config_path=str(config_path),
            timeout=llm_config.timeout if llm_config.timeout is not None else agent_config.timeout_ms / 1000,
        )
