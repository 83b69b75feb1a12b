"""
Unit tests for configuration loading, overrides and validation.
"""

import pytest
import yaml

from event_training.config.training_config import (
    ConfigurationError,
    ConfigurationValidator,
    DataConfig,
    MonitoringConfig,
    ResourceConfig,
    TrainingConfig,
    load_training_config,
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    for name in ("EVENT_TRAINING_LOG_LEVEL", "EVENT_TRAINING_STORAGE_ROOT",
                 "EVENT_TRAINING_MEMORY_THRESHOLD_MB", "EVENT_TRAINING_RANDOM_STATE",
                 "EVENT_TRAINING_ARTIFACT_DIR"):
        monkeypatch.delenv(name, raising=False)
    # Keep relative default config paths from picking up files in the repo
    monkeypatch.chdir(tmp_path)


def write_config(path, data):
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return str(path)


class TestTrainingConfig:

    def test_defaults_are_valid(self):
        config = TrainingConfig()

        assert config.validate() == []
        assert config.data.chunk_size == 5000
        assert config.resources.memory_threshold_mb == 500.0
        assert config.search.random_state == 42
        assert config.artifacts.artifact_dir == "models"

    def test_component_validation(self):
        assert DataConfig(chunk_size=0).validate()
        assert DataConfig(storage_root="").validate()
        assert ResourceConfig(downsample_rate=1.0).validate()
        assert MonitoringConfig(log_format="xml").validate()

    def test_to_dict(self):
        data = TrainingConfig().to_dict()

        assert data["data"]["storage_root"] == "storage"
        assert data["monitoring"]["log_level"] == "INFO"

    def test_production_rules(self):
        validator = ConfigurationValidator()
        config = TrainingConfig(
            monitoring=MonitoringConfig(log_level="DEBUG"),
            resources=ResourceConfig(memory_monitoring_enabled=False),
            environment="production"
        )

        is_valid, errors = validator.validate_configuration(config)

        assert is_valid is False
        assert len(errors) == 2


class TestLoadTrainingConfig:

    def test_packaged_defaults(self):
        config = load_training_config()

        assert config.environment == "development"
        assert config.data.chunk_size == 5000
        assert config.search.gc_fold_interval == 3
        assert config.monitoring.log_level == "DEBUG"

    def test_file_values_override_environment_defaults(self, tmp_path):
        path = write_config(tmp_path / "custom.yaml", {
            "data": {"storage_root": "/srv/storage", "chunk_size": 100},
            "monitoring": {"log_level": "ERROR"},
            "pipeline": {"pipeline_name": "crime_models"},
        })

        config = load_training_config(path, "production")

        assert config.data.storage_root == "/srv/storage"
        assert config.data.chunk_size == 100
        assert config.monitoring.log_level == "ERROR"
        assert config.monitoring.log_format == "json"
        assert config.pipeline_name == "crime_models"
        assert config.environment == "production"

    def test_environment_variables(self, tmp_path, monkeypatch):
        monkeypatch.setenv("EVENT_TRAINING_RANDOM_STATE", "9")
        monkeypatch.setenv("EVENT_TRAINING_MEMORY_THRESHOLD_MB", "750.5")
        monkeypatch.setenv("EVENT_TRAINING_STORAGE_ROOT", str(tmp_path))

        config = load_training_config(environment="staging")

        assert config.search.random_state == 9
        assert config.resources.memory_threshold_mb == 750.5
        assert config.data.storage_root == str(tmp_path)
        assert config.monitoring.log_format == "json"

    def test_invalid_environment_variable(self, monkeypatch):
        monkeypatch.setenv("EVENT_TRAINING_RANDOM_STATE", "abc")

        with pytest.raises(ConfigurationError, match="EVENT_TRAINING_RANDOM_STATE"):
            load_training_config()

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_training_config(str(tmp_path / "missing.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("data: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_training_config(str(path))

    def test_unknown_keys_rejected(self, tmp_path):
        path = write_config(tmp_path / "custom.yaml", {"data": {"chunk_sise": 10}})

        with pytest.raises(ConfigurationError, match="chunk_sise"):
            load_training_config(path)

    def test_invalid_values_rejected(self, tmp_path):
        path = write_config(tmp_path / "custom.yaml", {"resources": {"downsample_rate": 2}})

        with pytest.raises(ConfigurationError, match="Downsample rate"):
            load_training_config(path)

    def test_production_debug_logging_rejected(self, tmp_path):
        path = write_config(tmp_path / "custom.yaml", {"monitoring": {"log_level": "DEBUG"}})

        with pytest.raises(ConfigurationError, match="DEBUG"):
            load_training_config(path, "production")
