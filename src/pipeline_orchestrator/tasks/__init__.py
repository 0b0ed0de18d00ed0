"""Task collaborators package initialization."""

from pipeline_orchestrator.tasks.factory import TaskFactory
from pipeline_orchestrator.tasks.notifier import Notifier
from pipeline_orchestrator.tasks.storage import ObjectStore

__all__ = [
    "Notifier",
    "ObjectStore",
    "TaskFactory",
]
