"""FastAPI server adapter for pipeline-orchestrator.

This module exposes a REST trigger over the pipeline service.

Design intent:
- Keep execution logic in `pipeline_orchestrator.orchestrator.*`
- Keep server-specific concerns (routing, CORS, tracking in-flight runs) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from pipeline_orchestrator.server.app import create_app
