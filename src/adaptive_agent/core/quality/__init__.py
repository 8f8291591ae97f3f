"""Quality assurance pipeline and built-in checks."""

from adaptive_agent.core.quality.pipeline import QualityPipeline

__all__ = ["QualityPipeline"]
