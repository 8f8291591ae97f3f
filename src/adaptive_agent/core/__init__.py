"""Core domain: pipeline, quality, recovery, planning, prompts and memory."""
