"""
LiteLLM Completion Provider

Implements CompletionProviderProtocol on top of ``litellm.acompletion``.
Request modes are mapped to model aliases, aliases to concrete model names,
both from a YAML config file:

    default_model: main
    models:
      main: gpt-4.1
      fast: gpt-4.1-mini
    modes:
      code: main
      chat: fast
    default_params:
      temperature: 0.2
      max_tokens: 2000
    providers:
      openai:
        api_key_env: OPENAI_API_KEY

Retries are owned by the execution core, so every call here is a single
attempt. litellm exceptions are translated into ProviderError codes that the
error classifier and recovery strategies understand.
"""

import os
import time
from pathlib import Path
from typing import Any

import litellm
import structlog
import yaml

from adaptive_agent.core.domain.errors import ProviderError
from adaptive_agent.core.recovery.classifier import (
    CONTEXT_LENGTH_EXCEEDED,
    NETWORK_ERROR,
    RATE_LIMIT_EXCEEDED,
    TIMEOUT_ERROR,
)

AUTH_ERROR = "AUTH_ERROR"
PROVIDER_ERROR = "PROVIDER_ERROR"

ALLOWED_PARAMS = ("temperature", "top_p", "max_tokens", "frequency_penalty", "presence_penalty")
CREDENTIAL_KEYS = ("api_key", "api_base", "api_version")


def map_litellm_error(error: Exception) -> ProviderError:
    """
    Translate a litellm exception into a ProviderError.

    Order matters: litellm's Timeout derives from its connection error and
    ContextWindowExceededError derives from BadRequestError.
    """
    message = str(error) or type(error).__name__
    if isinstance(error, litellm.ContextWindowExceededError):
        return ProviderError(message, code=CONTEXT_LENGTH_EXCEEDED)
    if isinstance(error, litellm.RateLimitError):
        return ProviderError(message, code=RATE_LIMIT_EXCEEDED)
    if isinstance(error, litellm.Timeout):
        return ProviderError(message, code=TIMEOUT_ERROR)
    if isinstance(error, litellm.APIConnectionError):
        return ProviderError(message, code=NETWORK_ERROR)
    if isinstance(error, litellm.AuthenticationError):
        return ProviderError(message, code=AUTH_ERROR)

    status = getattr(error, "status_code", None)
    return ProviderError(
        message,
        code=PROVIDER_ERROR,
        status=status if isinstance(status, int) else None,
    )


class LiteLLMProvider:
    """
    Completion provider backed by LiteLLM.

    Args:
        config_path: Path to the YAML provider configuration
        timeout: Per-call timeout in seconds passed to litellm

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config is empty or defines no models
    """

    def __init__(self, config_path: str = "configs/llm_config.yaml", timeout: float = 300.0):
        self.timeout = timeout
        self.logger = structlog.get_logger().bind(component="litellm_provider")
        self._load_config(config_path)
        self._check_api_key()

        self.logger.info(
            "llm_provider_initialized",
            default_model=self.default_model,
            model_aliases=list(self.models.keys()),
            modes=list(self.modes.keys()),
        )

    def _load_config(self, config_path: str) -> None:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"LLM config not found: {config_path}")

        with open(config_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)

        if not config:
            raise ValueError(f"Config file is empty or invalid: {config_path}")

        self.default_model = config.get("default_model", "main")
        self.models: dict[str, str] = config.get("models", {})
        self.modes: dict[str, str] = config.get("modes", {})
        self.default_params: dict[str, Any] = config.get("default_params", {})
        self.provider_config: dict[str, Any] = config.get("providers", {})

        if not self.models:
            raise ValueError("Config must define at least one model in 'models' section")

    def _check_api_key(self) -> None:
        openai_config = self.provider_config.get("openai", {})
        api_key_env = openai_config.get("api_key_env", "OPENAI_API_KEY")
        if not os.getenv(api_key_env):
            self.logger.warning(
                "api_key_missing",
                env_var=api_key_env,
                hint="Set environment variable or pass credentials per request",
            )

    def resolve_model(self, mode: str) -> str:
        """
        Resolve a request mode to a concrete model name.

        A mode maps to a model alias; an unknown mode is tried as an alias
        itself and finally falls back to the default alias.
        """
        alias = self.modes.get(mode, mode)
        if alias not in self.models:
            alias = self.default_model
        return self.models.get(alias, alias)

    async def complete(
        self,
        prompt: str,
        mode: str,
        credentials: dict[str, Any] | None = None,
    ) -> str:
        """
        Complete a prompt with the model configured for ``mode``.

        Raises:
            ProviderError: On any litellm failure or an empty completion
        """
        model = self.resolve_model(mode)
        params = {k: v for k, v in self.default_params.items() if k in ALLOWED_PARAMS}
        if credentials:
            params.update({k: credentials[k] for k in CREDENTIAL_KEYS if k in credentials})

        start_time = time.time()
        self.logger.info("llm_completion_started", model=model, mode=mode, prompt_length=len(prompt))

        try:
            response = await litellm.acompletion(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                timeout=self.timeout,
                **params,
            )
        except Exception as e:
            error = map_litellm_error(e)
            self.logger.error(
                "llm_completion_failed",
                model=model,
                error_type=type(e).__name__,
                code=error.code,
                error=str(e)[:200],
            )
            raise error from e

        content = response.choices[0].message.content
        if not content:
            raise ProviderError(f"Model {model} returned an empty completion")

        usage = getattr(response, "usage", None)
        self.logger.info(
            "llm_completion_success",
            model=model,
            tokens=getattr(usage, "total_tokens", 0) if usage is not None else 0,
            latency_ms=int((time.time() - start_time) * 1000),
        )
        return content
