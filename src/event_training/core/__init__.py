# /event-training/src/event_training/core/__init__.py

"""
Core Training Components

Fundamental components of the streaming training pipeline:
- DatasetRowPreprocessor: Two-pass CSV streaming into a row buffer
- DatasetSplitter: Ordered train/validation split with statistics
- GridSearchEngine: Cross-validated hyperparameter search
- ArtifactStore: Atomic artifact persistence
- ModelTrainingPipeline: Stage coordination and error handling

Each component can be tested on its own and is wired together by the
pipeline.
"""

from .artifact_store import ArtifactStore, TrainingArtifact
from .classifier_factory import ClassifierFactory
from .dataset_splitter import DatasetSplitter
from .grid_search import GridSearchEngine
from .hyperparameter_resolver import HyperparameterResolver
from .pipeline_orchestrator import ModelTrainingPipeline, TrainingJob
from .row_preprocessor import DatasetRowPreprocessor

__all__ = [
    "ArtifactStore",
    "TrainingArtifact",
    "ClassifierFactory",
    "DatasetSplitter",
    "GridSearchEngine",
    "HyperparameterResolver",
    "ModelTrainingPipeline",
    "TrainingJob",
    "DatasetRowPreprocessor"
]
