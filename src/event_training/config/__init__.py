# /event-training/src/event_training/config/__init__.py

"""
Training Configuration Management

Hierarchical configuration for the event training pipeline with
environment overrides and validation.
"""

from .training_config import (
    ArtifactConfig,
    ConfigurationError,
    DataConfig,
    MonitoringConfig,
    ResourceConfig,
    SearchConfig,
    TrainingConfig,
    load_training_config
)

__all__ = [
    "TrainingConfig",
    "DataConfig",
    "SearchConfig",
    "ResourceConfig",
    "ArtifactConfig",
    "MonitoringConfig",
    "ConfigurationError",
    "load_training_config"
]
