"""Factory for the task registry behind the canonical pipeline."""

import logging

from pipeline_orchestrator.orchestrator.config import OrchestratorSettings
from pipeline_orchestrator.orchestrator.workflow.canonical import (
    EXTRACT,
    LOAD,
    NOTIFY_FAILURE,
    NOTIFY_SUCCESS,
    TRANSFORM,
)
from pipeline_orchestrator.orchestrator.workflow.invoker import TaskFn
from pipeline_orchestrator.tasks.etl import Extract, Load, NotifyFailure, NotifySuccess, Transform
from pipeline_orchestrator.tasks.notifier import FileNotifier, LogNotifier, Notifier
from pipeline_orchestrator.tasks.storage import LocalObjectStore, ObjectStore

logger = logging.getLogger(__name__)


class TaskFactory:
    """Factory wiring configured collaborators into task callables."""

    @staticmethod
    def create_store(settings: OrchestratorSettings) -> ObjectStore:
        return LocalObjectStore(settings.storage_root)

    @staticmethod
    def create_notifier(settings: OrchestratorSettings) -> Notifier:
        if settings.notification_path is not None:
            return FileNotifier(settings.notification_path)
        return LogNotifier()

    @staticmethod
    def create(
        settings: OrchestratorSettings,
        *,
        store: ObjectStore | None = None,
        notifier: Notifier | None = None,
    ) -> dict[str, TaskFn]:
        """Create the task registry keyed by task reference.

        Args:
            settings: Orchestrator settings providing storage and notification config.
            store: Optional object store overriding the configured one.
            notifier: Optional notifier overriding the configured one.

        Returns:
            Mapping of task reference to callable.
        """
        store = store or TaskFactory.create_store(settings)
        notifier = notifier or TaskFactory.create_notifier(settings)
        logger.info(
            "Creating task registry",
            extra={
                "storage_root": str(settings.storage_root),
                "notifier": type(notifier).__name__,
            },
        )
        return {
            EXTRACT: Extract(store=store),
            TRANSFORM: Transform(),
            LOAD: Load(store=store, results_bucket=settings.results_bucket),
            NOTIFY_SUCCESS: NotifySuccess(notifier=notifier),
            NOTIFY_FAILURE: NotifyFailure(notifier=notifier),
        }
