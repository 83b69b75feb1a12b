# /event-training/src/event_training/utils/__init__.py

"""
Training Utilities

Supporting infrastructure for the training pipeline including logging,
timestamp parsing and resource management.
"""

from .logging import TrainingLogger, setup_training_logging
from .resource_manager import MemoryGuard, MemoryResourceHandle, ResourceHandle
from .timestamps import epoch_seconds, parse_timestamp

__all__ = [
    "TrainingLogger",
    "setup_training_logging",
    "MemoryGuard",
    "MemoryResourceHandle",
    "ResourceHandle",
    "epoch_seconds",
    "parse_timestamp"
]
