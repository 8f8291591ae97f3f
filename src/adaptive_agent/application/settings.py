"""
Application settings with environment variable support.

Values come from (highest priority first) constructor arguments, environment
variables prefixed ``ADAPTIVE_AGENT_``, a local ``.env`` file, then defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentSettings(BaseSettings):
    """Process-level settings for the CLI and the agent factory."""

    config_dir: str = Field(default="configs", description="Directory containing profile YAML files")
    profile: str = Field(default="dev", description="Configuration profile name")
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Render logs as JSON lines")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ADAPTIVE_AGENT_",
        case_sensitive=False,
        extra="ignore",
    )
