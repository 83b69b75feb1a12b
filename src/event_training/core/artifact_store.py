# /event-training/src/event_training/core/artifact_store.py

"""
ArtifactStore: Atomic Persistence of Trained Model Artifacts

Writes a JSON descriptor and a serialized classifier for every completed
training run under ``models/<model_id>/<version>``. Both files are written
to temporary files in the target directory and moved into place, so a
reader never observes a partially written artifact.

Key Features:
- Atomic saves using temporary files and move operations
- Timestamp versions (YmdHis) kept unique and increasing per model
- Classifier serialization with joblib
- Loading always goes through the JSON descriptor

Architecture:
- LocalDisk resolves storage-relative paths
- Descriptor references the model file by its storage-relative path
"""

import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import joblib
import numpy as np

from .errors import TrainingPipelineError
from .storage import LocalDisk

VERSION_FORMAT = "%Y%m%d%H%M%S"


@dataclass
class TrainingArtifact:
    """
    Persisted record of one completed training run.

    The model file path is assigned by ArtifactStore.save.
    """
    model_id: Any
    training_run_id: Any
    trained_at: datetime
    model_type: str
    feature_names: List[str]
    feature_means: List[float]
    feature_std_devs: List[float]
    imputer_strategy: str
    imputer_statistics: List[float]
    categories: List[str]
    category_overflowed: bool
    hyperparameters: Dict[str, Any]
    metrics: Dict[str, Any]
    grid_search: Dict[str, Any]
    normalization: str
    feature_importances: List[Dict[str, Any]] = field(default_factory=list)
    model_file: Optional[str] = None

    @property
    def version(self) -> str:
        return self.trained_at.strftime(VERSION_FORMAT)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the descriptor layout."""
        hyperparameters = {
            key: value for key, value in self.hyperparameters.items() if key != "search_grid"
        }
        return {
            "model_id": self.model_id,
            "training_run_id": self.training_run_id,
            "trained_at": self.trained_at.isoformat(),
            "model_type": self.model_type,
            "feature_names": list(self.feature_names),
            "feature_means": list(self.feature_means),
            "feature_std_devs": list(self.feature_std_devs),
            "imputer": {
                "strategy": self.imputer_strategy,
                "statistics": list(self.imputer_statistics),
            },
            "categories": list(self.categories),
            "category_overflowed": self.category_overflowed,
            "hyperparameters": hyperparameters,
            "metrics": self.metrics,
            "grid_search": self.grid_search,
            "normalization": {"type": self.normalization},
            "feature_importances": list(self.feature_importances),
            "model_file": self.model_file,
        }


@dataclass
class SavedArtifact:
    artifact_path: str
    model_path: str
    version: str


def _is_version(stem: str) -> bool:
    if len(stem) != 14 or not stem.isdigit():
        return False
    try:
        datetime.strptime(stem, VERSION_FORMAT)
    except ValueError:
        return False
    return True


def _json_default(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, (datetime, Path)):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class ArtifactStore:
    """
    Saves and loads versioned training artifacts.
    """

    def __init__(self, disk: LocalDisk, config: Optional[Dict[str, Any]] = None):
        """
        Initialize artifact store.

        Args:
            disk: Storage disk the artifact directory lives on
            config: Artifact configuration (artifact_dir, indent)
        """
        self.disk = disk
        self.config = config or {}
        self.artifact_dir = self.config.get("artifact_dir", "models")
        self.indent = self.config.get("indent", 4)
        self.logger = logging.getLogger(__name__)

    def model_directory(self, model_id: Any) -> str:
        return f"{self.artifact_dir}/{model_id}"

    def save(self, artifact: TrainingArtifact, classifier: Any) -> SavedArtifact:
        """
        Atomically persist the descriptor and the classifier.

        Args:
            artifact: Artifact metadata; ``model_file`` is filled in
            classifier: Trained predictor

        Returns:
            Storage-relative paths and the version written

        Raises:
            ArtifactPersistenceError: If either file cannot be written
        """
        directory = self.model_directory(artifact.model_id)
        target_directory = self.disk.make_directory(directory)

        version = self._next_free_version(directory, artifact.trained_at)
        artifact_path = f"{directory}/{version}.json"
        model_path = f"{directory}/{version}.model"
        artifact.model_file = model_path

        if hasattr(classifier, "detach_progress_callback"):
            classifier.detach_progress_callback()

        temp_model_path = self._create_temp_file(target_directory, ".model")
        temp_artifact_path = self._create_temp_file(target_directory, ".json")

        try:
            joblib.dump(classifier, temp_model_path)

            with open(temp_artifact_path, "w", encoding="utf-8") as f:
                json.dump(artifact.to_dict(), f, indent=self.indent, default=_json_default)

            shutil.move(str(temp_model_path), str(self.disk.path(model_path)))
            shutil.move(str(temp_artifact_path), str(self.disk.path(artifact_path)))

        except (OSError, TypeError, ValueError) as e:
            for temp_path in (temp_model_path, temp_artifact_path):
                temp_path.unlink(missing_ok=True)

            self.logger.error("artifact.save_failed", extra={
                "model_id": artifact.model_id,
                "version": version,
                "error": str(e)
            }, exc_info=True)
            raise ArtifactPersistenceError(
                f"Failed to persist artifact {artifact_path}: {e}"
            ) from e

        self.logger.info("artifact.saved", extra={
            "model_id": artifact.model_id,
            "training_run_id": artifact.training_run_id,
            "version": version,
            "artifact_path": artifact_path,
            "model_path": model_path
        })

        return SavedArtifact(artifact_path=artifact_path, model_path=model_path, version=version)

    def list_versions(self, model_id: Any) -> List[str]:
        """Stored versions of a model, oldest first."""
        return self._stored_versions(self.model_directory(model_id))

    def load(self, model_id: Any, version: Optional[str] = None) -> Tuple[Dict[str, Any], Any]:
        """
        Load a descriptor and its classifier.

        Args:
            model_id: Model identifier
            version: Version to load; the latest when omitted

        Raises:
            ArtifactNotFound: If no matching artifact exists
        """
        versions = self.list_versions(model_id)
        if version is None:
            if not versions:
                raise ArtifactNotFound(f"No artifacts stored for model {model_id}")
            version = versions[-1]
        elif version not in versions:
            raise ArtifactNotFound(f"Artifact version {version} not found for model {model_id}")

        artifact_path = f"{self.model_directory(model_id)}/{version}.json"
        artifact = json.loads(self.disk.get(artifact_path))

        model_file = artifact.get("model_file")
        if not model_file or not self.disk.exists(model_file):
            raise ArtifactNotFound(f"Model file missing for artifact {artifact_path}")

        classifier = joblib.load(self.disk.path(model_file))

        self.logger.info("artifact.loaded", extra={
            "model_id": model_id,
            "version": version,
            "artifact_path": artifact_path
        })

        return artifact, classifier

    def _next_free_version(self, directory: str, trained_at: datetime) -> str:
        """YmdHis version of ``trained_at``, moved past the latest stored version."""
        existing = self._stored_versions(directory)
        candidate = trained_at
        version = candidate.strftime(VERSION_FORMAT)

        if existing and version <= existing[-1]:
            latest = datetime.strptime(existing[-1], VERSION_FORMAT)
            candidate = latest.replace(tzinfo=trained_at.tzinfo) + timedelta(seconds=1)
            version = candidate.strftime(VERSION_FORMAT)

        if candidate != trained_at:
            self.logger.warning("artifact.version_advanced", extra={
                "requested_version": trained_at.strftime(VERSION_FORMAT),
                "version": version
            })

        return version

    def _stored_versions(self, directory: str) -> List[str]:
        stems = (Path(path).stem for path in self.disk.files(directory, "*.json"))
        return sorted(stem for stem in stems if _is_version(stem))

    @staticmethod
    def _create_temp_file(directory: Path, suffix: str) -> Path:
        """Create temporary file for atomic operations."""
        fd, path = tempfile.mkstemp(suffix=suffix, dir=directory)
        os.close(fd)
        return Path(path)


# Custom exceptions
class ArtifactPersistenceError(TrainingPipelineError):
    """Raised when an artifact cannot be written."""
    pass


class ArtifactNotFound(ArtifactPersistenceError):
    """Raised when a requested artifact does not exist."""
    pass
