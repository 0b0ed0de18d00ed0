"""Orchestrator package: configuration, logging, CLI and the workflow engine."""

__all__: list[str] = []
