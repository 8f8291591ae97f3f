"""
Domain module for the request-processing pipeline.

Contains:
- agent: AdaptiveAgent pipeline orchestrator
- execution: provider calls with retry and recovery
- planner: ReasoningEngine workflow planner
- prompt_engine: PromptEngine prompt synthesizer
"""
