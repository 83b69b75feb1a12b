# /event-training/src/event_training/core/pipeline_orchestrator.py

"""
ModelTrainingPipeline: Streaming Training Pipeline Coordination

Turns a raw event dataset into a tuned, validated and persisted classifier.
Stages run strictly in order and each one hands its output to the next:

    resolve hyperparameters -> stream rows -> split + statistics ->
    grid search -> final training -> evaluation -> feature importance ->
    artifact persistence

Key Features:
- Training run lifecycle with validated status transitions
- Progress reporting at every phase boundary
- Memory reclamation points between phases and a memory guard
  that downsamples oversized training sets
- Typed dataset errors enriched with dataset context

Architecture:
- Synchronous, single-threaded execution
- Components injected for testing, built from TrainingConfig otherwise
- TrainingJob wraps a pipeline run with run bookkeeping, mirroring a
  queue worker
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from ..config.training_config import TrainingConfig
from ..utils.logging import TrainingLogger, stage_logging
from ..utils.resource_manager import MemoryGuard, MemoryResourceHandle
from .artifact_store import ArtifactStore, TrainingArtifact
from .classifier_factory import ClassifierFactory, ModelType
from .dataset_splitter import DatasetSplitter
from .errors import DatasetError, TrainingPipelineError
from .feature_importance import compute_feature_importances
from .grid_search import GridSearchEngine
from .hyperparameter_resolver import HyperparameterResolver
from .metrics_engine import extract_probability_scores, format_metrics, generate_classification_report
from .preprocessing import FoldPreprocessor
from .progress import ProgressCallback, ProgressNotifier, TrainingPhase
from .row_preprocessor import (
    DatasetEmpty,
    DatasetFileNotFound,
    DatasetPathMissing,
    DatasetRowPreprocessor,
    resolve_column_map,
)
from .storage import LocalDisk


class RunStatus(Enum):
    """Training run lifecycle states."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


VALID_TRANSITIONS = {
    RunStatus.QUEUED: [RunStatus.RUNNING, RunStatus.FAILED],
    RunStatus.RUNNING: [RunStatus.COMPLETED, RunStatus.FAILED],
    RunStatus.COMPLETED: [],  # Terminal state
    RunStatus.FAILED: [],  # Terminal state
}


@dataclass
class TrainingRun:
    """
    One training invocation and its lifecycle.
    """
    run_id: Any
    model_id: Any
    status: RunStatus = RunStatus.QUEUED
    hyperparameters: Dict[str, Any] = field(default_factory=dict)
    metrics: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    queued_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def transition_to(self, new_status: RunStatus) -> None:
        """
        Move to ``new_status``.

        Raises:
            InvalidRunTransition: If the transition is not allowed
        """
        if new_status not in VALID_TRANSITIONS[self.status]:
            raise InvalidRunTransition(
                f"Invalid run transition: {self.status.value} -> {new_status.value} (run_id={self.run_id})"
            )
        self.status = new_status

    def mark_running(self, hyperparameters: Optional[Mapping[str, Any]] = None) -> None:
        self.transition_to(RunStatus.RUNNING)
        self.started_at = datetime.now()
        self.error_message = None
        if hyperparameters is not None:
            self.hyperparameters = dict(hyperparameters)

    def mark_completed(self, metrics: Dict[str, Any], hyperparameters: Dict[str, Any]) -> None:
        self.transition_to(RunStatus.COMPLETED)
        self.finished_at = datetime.now()
        self.metrics = metrics
        self.hyperparameters = hyperparameters

    def mark_failed(self, error_message: str) -> None:
        self.transition_to(RunStatus.FAILED)
        self.finished_at = datetime.now()
        self.error_message = error_message

    @property
    def is_finished(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "model_id": self.model_id,
            "status": self.status.value,
            "hyperparameters": self.hyperparameters,
            "metrics": self.metrics,
            "error_message": self.error_message,
            "queued_at": self.queued_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class DatasetRecord:
    """Stored dataset reference; ``file_path`` is relative to the storage root."""
    dataset_id: Any
    file_path: Optional[str]
    schema_mapping: Dict[str, Any] = field(default_factory=dict)


class ModelTrainingPipeline:
    """
    Streaming model-training pipeline.
    """

    def __init__(self, config: Optional[TrainingConfig] = None,
                 disk: Optional[LocalDisk] = None,
                 preprocessor: Optional[DatasetRowPreprocessor] = None,
                 resolver: Optional[HyperparameterResolver] = None,
                 splitter: Optional[DatasetSplitter] = None,
                 grid_search: Optional[GridSearchEngine] = None,
                 classifier_factory: Optional[ClassifierFactory] = None,
                 artifact_store: Optional[ArtifactStore] = None,
                 memory_guard: Optional[MemoryGuard] = None):
        """
        Initialize the pipeline, building any component not supplied.

        Args:
            config: Training configuration (defaults when omitted)
            disk: Storage disk datasets and artifacts live on
        """
        self.config = config or TrainingConfig()
        self.logger = logging.getLogger(__name__)
        self.training_logger = TrainingLogger(__name__)

        random_state = self.config.search.random_state

        self.disk = disk or LocalDisk(self.config.data.storage_root)
        self.preprocessor = preprocessor or DatasetRowPreprocessor({
            "chunk_size": self.config.data.chunk_size,
            "max_tracked_categories": self.config.data.max_tracked_categories,
            "spool_memory_limit": self.config.data.spool_memory_limit,
            "gc_interval_rows": self.config.data.gc_interval_rows,
        })
        self.resolver = resolver or HyperparameterResolver()
        self.splitter = splitter or DatasetSplitter()
        self.classifier_factory = classifier_factory or ClassifierFactory(random_state=random_state)
        self.grid_search = grid_search or GridSearchEngine({
            "random_state": random_state,
            "gc_fold_interval": self.config.search.gc_fold_interval,
            "gc_combination_interval": self.config.search.gc_combination_interval,
        }, classifier_factory=self.classifier_factory)
        self.artifact_store = artifact_store or ArtifactStore(self.disk, {
            "artifact_dir": self.config.artifacts.artifact_dir,
            "indent": self.config.artifacts.indent,
        })
        self.memory_guard = memory_guard or MemoryGuard({
            "memory_threshold_mb": self.config.resources.memory_threshold_mb,
            "downsample_rate": self.config.resources.downsample_rate,
            "memory_monitoring_enabled": self.config.resources.memory_monitoring_enabled,
            "random_state": random_state,
        })

        self.logger.info("pipeline.initialized", extra={
            "storage_root": str(self.disk.root),
            "environment": self.config.environment,
            "random_state": random_state
        })

    def train(self, run: TrainingRun, dataset: DatasetRecord,
              hyperparameters: Optional[Mapping[str, Any]] = None,
              progress_callback: Optional[ProgressCallback] = None) -> Dict[str, Any]:
        """
        Train, evaluate and persist a model for ``run``.

        Args:
            run: Training run being executed
            dataset: Dataset to train on
            hyperparameters: Raw caller hyperparameters
            progress_callback: Optional ``(percent, message)`` sink

        Returns:
            Dictionary with metrics, artifact_path, version, metadata and
            the final hyperparameters

        Raises:
            DatasetError: For missing files or unusable data
            TrainingPipelineError: For any other pipeline failure
        """
        progress = ProgressNotifier(progress_callback)
        context = {"run_id": run.run_id, "model_id": run.model_id, "dataset_id": dataset.dataset_id}

        with self.training_logger.context(**context), self.training_logger.timer("training_run"):
            path = self._resolve_dataset_path(dataset)

            progress.phase(TrainingPhase.SCHEMA_ANALYSIS)
            column_map = resolve_column_map(dataset.schema_mapping)

            with stage_logging(self.training_logger, "row_preprocessing"), MemoryResourceHandle("row_preprocessing"):
                try:
                    prepared = self.preprocessor.prepare_training_data(path, column_map)
                except DatasetError as e:
                    raise e.with_context(dataset_id=dataset.dataset_id, file_path=dataset.file_path)

            resolved = self.resolver.resolve(hyperparameters)
            progress.phase(TrainingPhase.BUFFERING)

            with stage_logging(self.training_logger, "split"), MemoryResourceHandle("split"):
                try:
                    split = self.splitter.split(prepared.buffer, resolved["validation_split"])
                except DatasetError as e:
                    raise e.with_context(dataset_id=dataset.dataset_id, file_path=dataset.file_path)
                finally:
                    prepared.buffer.close()

            progress.phase(TrainingPhase.SPLITTING)

            train_samples, train_labels = split.train_buffer.to_arrays()
            train_samples, train_labels = self.memory_guard.apply(train_samples, train_labels)
            validation_samples, validation_labels = split.validation_buffer.to_arrays()
            means, std_devs, train_seen = split.means, split.std_devs, split.train_seen
            del split

            if train_labels.size == 0 or train_samples.shape[1] == 0:
                raise DatasetEmpty(
                    "Cannot train a model without features.",
                    dataset_id=dataset.dataset_id, file_path=dataset.file_path, row_count=int(train_labels.size)
                )

            iteration_notifier = progress.iteration_notifier(resolved["iterations"])

            progress.phase(TrainingPhase.GRID_SEARCH)
            with stage_logging(self.training_logger, "grid_search"), MemoryResourceHandle("grid_search"):
                search_result = self.grid_search.search(
                    train_samples, train_labels, resolved, iteration_notifier
                )

            best_params = search_result.best_hyperparameters
            final_hyperparameters = {**resolved, **best_params}
            final_hyperparameters.pop("search_grid", None)

            preprocessor = FoldPreprocessor(
                resolved["imputation_strategy"],
                resolved["normalization"],
                means=means,
                std_devs=std_devs
            )
            train_samples = preprocessor.fit_transform(train_samples)
            validation_samples = preprocessor.transform(validation_samples)

            classifier = self.classifier_factory.create(
                resolved["model_type"], best_params, resolved, iteration_notifier,
                sample_count=int(train_labels.size)
            )
            if classifier.model_type is ModelType.KNN:
                final_hyperparameters["k"] = classifier.config.k

            progress.phase(TrainingPhase.FINAL_TRAINING)
            with stage_logging(self.training_logger, "final_training"):
                classifier.train(train_samples, train_labels)

            progress.phase(TrainingPhase.EVALUATION)
            with stage_logging(self.training_logger, "evaluation"):
                predicted = classifier.predict(validation_samples)
                probabilities = extract_probability_scores(
                    classifier.predict_probabilities(validation_samples)
                )
                report = generate_classification_report(validation_labels, predicted)
                metrics = format_metrics(report, probabilities, validation_labels.tolist())

            progress.phase(TrainingPhase.FEATURE_IMPORTANCE)
            feature_importances = compute_feature_importances(
                train_samples, train_labels, prepared.feature_names
            )

            progress.phase(TrainingPhase.PERSISTENCE)
            artifact = TrainingArtifact(
                model_id=run.model_id,
                training_run_id=run.run_id,
                trained_at=datetime.now().astimezone().replace(microsecond=0),
                model_type=resolved["model_type"],
                feature_names=prepared.feature_names,
                feature_means=means,
                feature_std_devs=std_devs,
                imputer_strategy=resolved["imputation_strategy"],
                imputer_statistics=preprocessor.imputer.statistics,
                categories=prepared.categories,
                category_overflowed=prepared.category_overflowed,
                hyperparameters=final_hyperparameters,
                metrics=metrics,
                grid_search=search_result.metrics,
                normalization=resolved["normalization"],
                feature_importances=feature_importances
            )

            with stage_logging(self.training_logger, "persistence"):
                saved = self.artifact_store.save(artifact, classifier)

            progress.phase(TrainingPhase.METADATA)

        self.logger.info("pipeline.training_completed", extra={
            **context,
            "model_type": resolved["model_type"],
            "accuracy": metrics["accuracy"],
            "macro_f1": metrics["macro_f1"],
            "auc": metrics["auc"],
            "train_rows": int(train_labels.size),
            "train_seen": train_seen,
            "validation_rows": int(validation_labels.size),
            "version": saved.version
        })

        return {
            "metrics": metrics,
            "artifact_path": saved.artifact_path,
            "version": saved.version,
            "metadata": {"artifact_path": saved.artifact_path},
            "hyperparameters": final_hyperparameters,
        }

    def _resolve_dataset_path(self, dataset: DatasetRecord) -> str:
        if not dataset.file_path:
            raise DatasetPathMissing("Dataset is missing a file path.", dataset_id=dataset.dataset_id)

        if not self.disk.exists(dataset.file_path):
            raise DatasetFileNotFound(
                f'Dataset file "{dataset.file_path}" was not found.',
                dataset_id=dataset.dataset_id, file_path=dataset.file_path
            )

        return str(self.disk.path(dataset.file_path))


class TrainingJob:
    """
    Runs one training run end to end and records its outcome on the run.
    """

    def __init__(self, pipeline: ModelTrainingPipeline):
        self.pipeline = pipeline
        self.logger = logging.getLogger(__name__)

    def handle(self, run: TrainingRun, dataset: DatasetRecord,
               hyperparameters: Optional[Mapping[str, Any]] = None,
               status_sink: Optional[ProgressCallback] = None) -> Dict[str, Any]:
        """
        Execute the run.

        The run moves to running, then to completed with metrics and final
        hyperparameters, or to failed with the error message. Failures are
        re-raised after being recorded.
        """
        effective_hyperparameters = dict(hyperparameters if hyperparameters is not None
                                         else run.hyperparameters or {})
        run.mark_running(effective_hyperparameters)

        progress = ProgressNotifier(status_sink)
        progress.phase(TrainingPhase.PREPARING)

        self.logger.info("training_job.started", extra={
            "run_id": run.run_id,
            "model_id": run.model_id,
            "dataset_id": dataset.dataset_id
        })

        try:
            result = self.pipeline.train(
                run, dataset, effective_hyperparameters,
                progress.notify if progress.enabled else None
            )
            progress.phase(TrainingPhase.FINALIZING)
        except Exception as e:
            run.mark_failed(str(e))
            self.logger.error("training_job.failed", extra={
                "run_id": run.run_id,
                "model_id": run.model_id,
                "error_type": type(e).__name__,
                "error": str(e)
            }, exc_info=True)
            raise

        run.mark_completed(result["metrics"], result["hyperparameters"])

        self.logger.info("training_job.completed", extra={
            "run_id": run.run_id,
            "model_id": run.model_id,
            "version": result["version"],
            "accuracy": result["metrics"]["accuracy"]
        })

        return result


# Custom exceptions
class InvalidRunTransition(TrainingPipelineError):
    """Raised when a training run status transition is not allowed."""
    pass
