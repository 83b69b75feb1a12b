# /event-training/src/event_training/core/errors.py

"""
Base exception types shared across the training pipeline.

Component-specific exceptions are declared at the bottom of the module that
raises them; this module only holds the roots of the hierarchy so that leaf
modules can share them without import cycles.
"""

from typing import Any, Dict, Optional


class TrainingPipelineError(Exception):
    """Base exception for all training pipeline failures."""
    pass


class DatasetError(TrainingPipelineError, RuntimeError):
    """
    Fatal data problem (missing file, unusable rows, empty split).

    Carries enough context for the caller to diagnose the failure without
    re-running the pipeline.
    """

    def __init__(self, message: str,
                 dataset_id: Optional[Any] = None,
                 file_path: Optional[str] = None,
                 row_count: Optional[int] = None):
        self.message = message
        self.dataset_id = dataset_id
        self.file_path = file_path
        self.row_count = row_count
        super().__init__(self._format())

    def _format(self) -> str:
        details = []
        if self.dataset_id is not None:
            details.append(f"dataset_id={self.dataset_id}")
        if self.file_path is not None:
            details.append(f"file_path={self.file_path}")
        if self.row_count is not None:
            details.append(f"row_count={self.row_count}")

        if not details:
            return self.message
        return f"{self.message} ({', '.join(details)})"

    def with_context(self, **context) -> "DatasetError":
        """Fill in missing context fields and refresh the message."""
        for key in ("dataset_id", "file_path", "row_count"):
            if getattr(self, key) is None and context.get(key) is not None:
                setattr(self, key, context[key])
        self.args = (self._format(),)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "dataset_id": self.dataset_id,
            "file_path": self.file_path,
            "row_count": self.row_count,
        }
