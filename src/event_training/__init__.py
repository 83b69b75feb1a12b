# /event-training/src/event_training/__init__.py

"""
Streaming Model Training Pipeline for Geotagged Event Records

Turns a stored CSV dataset of events into a tuned, validated and persisted
binary classifier with bounded memory use.

Key Features:
- Two-pass streaming preprocessing with a disk-backed row buffer
- Hyperparameter resolution with clamping and defaults
- Cross-validated grid search over six model families
- Validation metrics, feature importances and atomic artifact persistence
- Progress reporting and training run lifecycle tracking

Core Components:
- DatasetRowPreprocessor: CSV streaming, schema mapping and labelling
- DatasetSplitter: Ordered split with streaming statistics
- GridSearchEngine: Cross-validated hyperparameter search
- ArtifactStore: Versioned descriptor and model persistence
- ModelTrainingPipeline / TrainingJob: Run coordination

Architecture:
- Synchronous pipeline; each stage consumes the previous stage's output
- Components injected for testing, built from TrainingConfig otherwise
"""

import logging

from .core.artifact_store import ArtifactStore, SavedArtifact, TrainingArtifact
from .core.classifier_factory import ClassifierFactory, ModelType, TrainablePredictor
from .core.dataset_splitter import DatasetSplitter, SplitResult
from .core.errors import DatasetError, TrainingPipelineError
from .core.grid_search import GridSearchEngine, GridSearchResult
from .core.hyperparameter_resolver import HyperparameterResolver
from .core.pipeline_orchestrator import (
    DatasetRecord,
    ModelTrainingPipeline,
    RunStatus,
    TrainingJob,
    TrainingRun
)
from .core.progress import ProgressNotifier, TrainingPhase
from .core.row_preprocessor import DatasetRowPreprocessor, PreparedDataset, RowBuffer
from .core.storage import LocalDisk

from .config.training_config import (
    ArtifactConfig,
    DataConfig,
    MonitoringConfig,
    ResourceConfig,
    SearchConfig,
    TrainingConfig,
    load_training_config
)

from .utils.logging import TrainingLogger, setup_training_logging
from .utils.resource_manager import MemoryGuard, ResourceHandle

__version__ = "1.0.0"

__all__ = [
    # Core components
    "ArtifactStore",
    "SavedArtifact",
    "TrainingArtifact",
    "ClassifierFactory",
    "ModelType",
    "TrainablePredictor",
    "DatasetSplitter",
    "SplitResult",
    "DatasetError",
    "TrainingPipelineError",
    "GridSearchEngine",
    "GridSearchResult",
    "HyperparameterResolver",
    "DatasetRecord",
    "ModelTrainingPipeline",
    "RunStatus",
    "TrainingJob",
    "TrainingRun",
    "ProgressNotifier",
    "TrainingPhase",
    "DatasetRowPreprocessor",
    "PreparedDataset",
    "RowBuffer",
    "LocalDisk",

    # Configuration
    "TrainingConfig",
    "DataConfig",
    "SearchConfig",
    "ResourceConfig",
    "ArtifactConfig",
    "MonitoringConfig",
    "load_training_config",

    # Utilities
    "TrainingLogger",
    "setup_training_logging",
    "MemoryGuard",
    "ResourceHandle",

    "create_training_pipeline",
    "create_training_job"
]


def create_training_pipeline(config_path: str = None, environment: str = "development") -> ModelTrainingPipeline:
    """
    Factory function to create a fully configured training pipeline.

    Args:
        config_path: Path to custom configuration file
        environment: Environment name (development, staging, production)

    Returns:
        Configured ModelTrainingPipeline

    Examples:
        # Development pipeline with defaults
        pipeline = create_training_pipeline()

        # Production pipeline with custom config
        pipeline = create_training_pipeline("config/custom.yaml", "production")
    """
    config = load_training_config(config_path, environment)

    setup_training_logging(
        level=config.monitoring.log_level,
        log_format=config.monitoring.log_format,
        log_dir=config.monitoring.log_dir,
        enable_file=config.monitoring.enable_file_logging
    )

    logger = logging.getLogger(__name__)
    logger.info("event_training.pipeline_created", extra={
        "version": __version__,
        "environment": environment
    })

    return ModelTrainingPipeline(config)


def create_training_job(config_path: str = None, environment: str = "development") -> TrainingJob:
    """Training job around a pipeline built by create_training_pipeline."""
    return TrainingJob(create_training_pipeline(config_path, environment))
