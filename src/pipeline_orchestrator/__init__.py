"""Pipeline Orchestrator.

Declarative extract -> transform -> load pipelines executed by a small state
machine:
- workflow definitions loaded from JSON and validated before any run starts
- task collaborators reached only through a task invoker boundary
- every stage failure routed by ordered catch rules to a handling stage
- structured logging and persisted run records for audit and replay
"""

__version__ = "0.1.0"

from pipeline_orchestrator.orchestrator.config import OrchestratorSettings

__all__ = ["__version__", "OrchestratorSettings"]
