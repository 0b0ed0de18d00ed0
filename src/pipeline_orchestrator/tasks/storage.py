"""Object storage used by the extract and load stages."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from pipeline_orchestrator.orchestrator.workflow.invoker import TaskError

logger = logging.getLogger(__name__)

ERROR_OBJECT_NOT_FOUND = "object_not_found"
ERROR_STORAGE_UNAVAILABLE = "storage_unavailable"
ERROR_INVALID_LOCATION = "invalid_location"
ERROR_MALFORMED_RECORD = "malformed_record"


class ObjectStore(ABC):
    """Abstract bucket/key object store.

    Implementations raise :class:`TaskError` with a storage error class so the
    orchestrator can route failures without knowing the backend.
    """

    @abstractmethod
    def get_text(self, bucket: str, key: str) -> str:
        """Read an object as UTF-8 text.

        Args:
            bucket: Bucket name.
            key: Object key inside the bucket.

        Returns:
            Object contents.
        """
        pass

    @abstractmethod
    def put_text(self, bucket: str, key: str, text: str) -> None:
        """Write an object as UTF-8 text, replacing any existing object.

        Args:
            bucket: Bucket name.
            key: Object key inside the bucket.
            text: Contents to write.
        """
        pass


class LocalObjectStore(ObjectStore):
    """Filesystem-backed store: a bucket is a directory under `root`."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _path(self, bucket: str, key: str) -> Path:
        if not bucket or "/" in bucket or bucket in {".", ".."}:
            raise TaskError(ERROR_INVALID_LOCATION, f"Invalid bucket name: {bucket!r}")
        parts = [p for p in key.split("/") if p]
        if not parts or any(p in {".", ".."} for p in parts):
            raise TaskError(ERROR_INVALID_LOCATION, f"Invalid object key: {key!r}")
        return self.root.joinpath(bucket, *parts)

    def get_text(self, bucket: str, key: str) -> str:
        path = self._path(bucket, key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise TaskError(ERROR_OBJECT_NOT_FOUND, f"{bucket}/{key} does not exist") from e
        except UnicodeDecodeError as e:
            raise TaskError(
                ERROR_MALFORMED_RECORD, f"{bucket}/{key} is not UTF-8 text: {e}"
            ) from e
        except OSError as e:
            raise TaskError(ERROR_STORAGE_UNAVAILABLE, f"Cannot read {bucket}/{key}: {e}") from e

    def put_text(self, bucket: str, key: str, text: str) -> None:
        path = self._path(bucket, key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        except OSError as e:
            raise TaskError(ERROR_STORAGE_UNAVAILABLE, f"Cannot write {bucket}/{key}: {e}") from e
        logger.debug("Object written", extra={"bucket": bucket, "key": key, "path": str(path)})
