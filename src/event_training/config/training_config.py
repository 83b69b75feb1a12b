# /event-training/src/event_training/config/training_config.py

"""
Training Configuration Management

Hierarchical configuration for the event training pipeline with
environment-specific overrides and validation.

Key Features:
- YAML-based configuration with environment-specific overrides
- Validation with descriptive error reporting
- Immutable configuration objects with defaults
- Environment variable overrides with type coercion

Architecture:
- Frozen dataclass per component, each with validate()
- Base YAML -> environment defaults -> environment variables
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml


@dataclass(frozen=True)
class DataConfig:
    """
    Configuration for dataset access and streaming preprocessing.
    """
    storage_root: str = "storage"
    chunk_size: int = 5000
    max_tracked_categories: int = 64
    spool_memory_limit: int = 262144
    gc_interval_rows: int = 2500

    def validate(self) -> List[str]:
        """Validate data configuration parameters."""
        errors = []

        if not self.storage_root:
            errors.append("Storage root cannot be empty")

        if self.chunk_size <= 0:
            errors.append(f"Chunk size must be positive: {self.chunk_size}")

        if self.max_tracked_categories <= 0:
            errors.append(f"Max tracked categories must be positive: {self.max_tracked_categories}")

        if self.spool_memory_limit < 0:
            errors.append(f"Spool memory limit must be non-negative: {self.spool_memory_limit}")

        if self.gc_interval_rows <= 0:
            errors.append(f"GC interval rows must be positive: {self.gc_interval_rows}")

        return errors


@dataclass(frozen=True)
class SearchConfig:
    """
    Configuration for the grid search engine.
    """
    random_state: Optional[int] = 42
    gc_fold_interval: int = 3
    gc_combination_interval: int = 2

    def validate(self) -> List[str]:
        errors = []

        if self.random_state is not None and self.random_state < 0:
            errors.append(f"Random state must be non-negative: {self.random_state}")

        if self.gc_fold_interval <= 0:
            errors.append(f"GC fold interval must be positive: {self.gc_fold_interval}")

        if self.gc_combination_interval <= 0:
            errors.append(f"GC combination interval must be positive: {self.gc_combination_interval}")

        return errors


@dataclass(frozen=True)
class ResourceConfig:
    """
    Configuration for memory monitoring and the memory guard.
    """
    memory_threshold_mb: float = 500.0
    downsample_rate: float = 0.5
    memory_monitoring_enabled: bool = True

    def validate(self) -> List[str]:
        errors = []

        if self.memory_threshold_mb <= 0:
            errors.append(f"Memory threshold must be positive: {self.memory_threshold_mb}")

        if not 0 < self.downsample_rate < 1:
            errors.append(f"Downsample rate must be between 0 and 1: {self.downsample_rate}")

        return errors


@dataclass(frozen=True)
class ArtifactConfig:
    """
    Configuration for artifact persistence.
    """
    artifact_dir: str = "models"
    indent: int = 4

    def validate(self) -> List[str]:
        errors = []

        if not self.artifact_dir:
            errors.append("Artifact directory cannot be empty")

        if self.indent < 0:
            errors.append(f"Indent must be non-negative: {self.indent}")

        return errors


@dataclass(frozen=True)
class MonitoringConfig:
    """
    Configuration for logging.
    """
    log_level: str = "INFO"
    log_format: str = "text"  # json, text
    log_dir: str = "logs/training"
    enable_file_logging: bool = False

    def validate(self) -> List[str]:
        errors = []

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            errors.append(f"Invalid log level: {self.log_level}")

        valid_log_formats = ["json", "text"]
        if self.log_format.lower() not in valid_log_formats:
            errors.append(f"Invalid log format: {self.log_format}")

        return errors


@dataclass(frozen=True)
class TrainingConfig:
    """
    Master training configuration combining all component configurations.
    """
    data: DataConfig = field(default_factory=DataConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    resources: ResourceConfig = field(default_factory=ResourceConfig)
    artifacts: ArtifactConfig = field(default_factory=ArtifactConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    pipeline_name: str = "event_model_training"
    environment: str = "development"
    version: str = "1.0.0"

    def validate(self) -> List[str]:
        """Validate complete training configuration."""
        errors = []

        errors.extend(self.data.validate())
        errors.extend(self.search.validate())
        errors.extend(self.resources.validate())
        errors.extend(self.artifacts.validate())
        errors.extend(self.monitoring.validate())

        if not self.pipeline_name:
            errors.append("Pipeline name cannot be empty")

        return errors

    def is_production_environment(self) -> bool:
        return self.environment.lower() == "production"

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


class ConfigurationValidator:
    """
    Configuration validator with detailed error reporting.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def validate_configuration(self, config: TrainingConfig) -> Tuple[bool, List[str]]:
        """
        Validate the configuration and the environment it runs in.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors = config.validate()
        errors.extend(self._validate_environment_compatibility(config))

        is_valid = len(errors) == 0

        if not is_valid:
            self.logger.error("configuration.validation_failed", extra={
                "error_count": len(errors),
                "errors": errors
            })

        return is_valid, errors

    def _validate_environment_compatibility(self, config: TrainingConfig) -> List[str]:
        errors = []

        if config.is_production_environment():
            if config.monitoring.log_level.upper() == "DEBUG":
                errors.append("DEBUG logging not recommended in production")

            if not config.resources.memory_monitoring_enabled:
                errors.append("Memory monitoring must be enabled in production")

        return errors


def load_training_config(config_path: Optional[str] = None,
                         environment: str = "development") -> TrainingConfig:
    """
    Load training configuration with environment-specific overrides.

    Args:
        config_path: Path to custom configuration file
        environment: Environment name (development, staging, production)

    Returns:
        Validated TrainingConfig object

    Raises:
        ConfigurationError: If configuration is invalid
    """
    logger = logging.getLogger(__name__)

    try:
        base_config = _load_base_config(config_path)
        env_config = _apply_environment_overrides(base_config, environment)
        config = _create_config_object(env_config, environment)

        validator = ConfigurationValidator()
        is_valid, errors = validator.validate_configuration(config)

        if not is_valid:
            raise ConfigurationError(f"Configuration validation failed: {errors}")

        logger.info("training_config.loaded", extra={
            "environment": environment,
            "config_path": config_path,
            "storage_root": config.data.storage_root
        })

        return config

    except ConfigurationError:
        raise
    except (TypeError, ValueError, OSError) as e:
        logger.error("training_config.load_failed", extra={
            "environment": environment,
            "config_path": config_path,
            "error": str(e)
        })
        raise ConfigurationError(f"Failed to load training configuration: {e}") from e


def _load_base_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load base configuration from YAML file."""
    if config_path is None:
        config_paths = [
            "config/training/base.yaml",
            str(Path(__file__).with_name("base.yaml")),
            "training_config.yaml"
        ]

        for path in config_paths:
            if Path(path).exists():
                config_path = path
                break
        else:
            return {}

    config_file = Path(config_path)
    if not config_file.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML configuration: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

    return config


def _apply_environment_overrides(base_config: Dict[str, Any],
                                 environment: str) -> Dict[str, Any]:
    """Apply environment-specific configuration overrides."""
    env_defaults = {
        "development": {
            "monitoring": {
                "log_level": "DEBUG"
            }
        },
        "staging": {
            "monitoring": {
                "log_level": "INFO",
                "log_format": "json"
            }
        },
        "production": {
            "monitoring": {
                "log_level": "WARNING",
                "log_format": "json",
                "enable_file_logging": True
            },
            "resources": {
                "memory_monitoring_enabled": True
            }
        }
    }

    # File values win over environment defaults
    config = _deep_merge_dicts(env_defaults.get(environment.lower(), {}), base_config)
    return _apply_environment_variables(config)


def _deep_merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge_dicts(result[key], value)
        else:
            result[key] = value

    return result


ENVIRONMENT_VARIABLES = {
    "EVENT_TRAINING_LOG_LEVEL": ("monitoring", "log_level", str),
    "EVENT_TRAINING_STORAGE_ROOT": ("data", "storage_root", str),
    "EVENT_TRAINING_MEMORY_THRESHOLD_MB": ("resources", "memory_threshold_mb", float),
    "EVENT_TRAINING_RANDOM_STATE": ("search", "random_state", int),
    "EVENT_TRAINING_ARTIFACT_DIR": ("artifacts", "artifact_dir", str),
}


def _apply_environment_variables(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides."""
    config = {key: dict(value) if isinstance(value, dict) else value for key, value in config.items()}

    for env_var, (section, key, cast) in ENVIRONMENT_VARIABLES.items():
        value = os.getenv(env_var)
        if value is None or value == "":
            continue

        try:
            converted = cast(value)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {env_var}: {value!r}") from e

        config.setdefault(section, {})[key] = converted

    return config


def _create_config_object(config_dict: Dict[str, Any], environment: str) -> TrainingConfig:
    """Create TrainingConfig object from dictionary."""
    sections = {
        "data": DataConfig,
        "search": SearchConfig,
        "resources": ResourceConfig,
        "artifacts": ArtifactConfig,
        "monitoring": MonitoringConfig,
    }

    components = {}
    for name, config_class in sections.items():
        values = config_dict.get(name) or {}
        known = {f.name for f in dataclasses.fields(config_class)}
        unknown = set(values) - known
        if unknown:
            raise ConfigurationError(f"Unknown keys in '{name}' section: {sorted(unknown)}")
        components[name] = config_class(**values)

    pipeline_config = config_dict.get("pipeline") or {}

    return TrainingConfig(
        environment=environment,
        **components,
        **pipeline_config
    )


# Custom exceptions
class ConfigurationError(Exception):
    """Base exception for configuration errors."""
    pass
