"""Error classification and recovery strategies."""

from adaptive_agent.core.recovery.error_recovery import ErrorRecovery

__all__ = ["ErrorRecovery"]
