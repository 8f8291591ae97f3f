"""Adaptive Agent - quality-checked, self-recovering request-processing pipeline."""

__version__ = "0.1.0"
