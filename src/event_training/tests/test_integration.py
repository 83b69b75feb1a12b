# /event-training/src/event_training/tests/test_integration.py

"""
Integration Tests for the Streaming Training Pipeline

End-to-end runs of the pipeline and the training job against a synthetic
event dataset stored on a temporary disk. These tests exercise every stage
together: streaming preprocessing, split, grid search, final training,
evaluation, feature importance and artifact persistence.
"""

import json
import logging
import shutil
import sys
import tempfile
from pathlib import Path

import joblib
import numpy as np
import pandas as pd
import pytest

sys.path.append(str(Path(__file__).resolve().parents[2]))

from event_training import create_training_pipeline
from event_training.config.training_config import DataConfig, ResourceConfig, TrainingConfig
from event_training.core.pipeline_orchestrator import (
    DatasetRecord,
    InvalidRunTransition,
    ModelTrainingPipeline,
    RunStatus,
    TrainingJob,
    TrainingRun,
)
from event_training.core.progress import TrainingPhase
from event_training.core.row_preprocessor import (
    BASE_FEATURE_NAMES,
    DatasetFileNotFound,
    DatasetPathMissing,
    MissingRequiredColumn,
)
from event_training.utils.logging import PACKAGE_LOGGER

PIPELINE_PHASES = [
    TrainingPhase.SCHEMA_ANALYSIS, TrainingPhase.BUFFERING, TrainingPhase.SPLITTING,
    TrainingPhase.GRID_SEARCH, TrainingPhase.FINAL_TRAINING, TrainingPhase.EVALUATION,
    TrainingPhase.FEATURE_IMPORTANCE, TrainingPhase.PERSISTENCE, TrainingPhase.METADATA,
]


@pytest.mark.integration
class TestTrainingPipelineIntegration:
    """
    End-to-end tests for ModelTrainingPipeline and TrainingJob.
    """

    @pytest.fixture
    def temp_dir(self):
        """Create temporary storage root for datasets and artifacts."""
        temp_dir = tempfile.mkdtemp()
        yield Path(temp_dir)
        shutil.rmtree(temp_dir, ignore_errors=True)

    @pytest.fixture
    def mock_events(self, temp_dir):
        """Create 100 synthetic events whose label follows the risk score."""
        n_samples = 100
        rng = np.random.default_rng(42)
        start = pd.Timestamp("2024-01-01 00:00:00")

        risk = rng.uniform(0.0, 1.0, n_samples).round(3)
        labels = (risk > 0.5).astype(int)
        labels[0], labels[1] = 0, 1

        df = pd.DataFrame({
            "Timestamp": [
                (start + pd.Timedelta(hours=int(h))).strftime("%Y-%m-%d %H:%M:%S")
                for h in rng.integers(0, 24 * 60, n_samples)
            ],
            "Latitude": rng.uniform(40.0, 41.0, n_samples).round(5),
            "Longitude": rng.uniform(-74.5, -73.5, n_samples).round(5),
            "Category": rng.choice(["burglary", "theft", "vandalism"], n_samples),
            "Risk Score": risk,
            "Label": labels,
        })

        dataset_path = temp_dir / "datasets" / "events.csv"
        dataset_path.parent.mkdir(parents=True)
        df.to_csv(dataset_path, index=False)

        return dataset_path, df

    @pytest.fixture
    def test_config(self, temp_dir):
        """Configuration rooted at the temporary directory."""
        return TrainingConfig(
            data=DataConfig(storage_root=str(temp_dir), chunk_size=32),
            resources=ResourceConfig(memory_monitoring_enabled=False),
            environment="testing"
        )

    @pytest.fixture
    def pipeline(self, test_config):
        return ModelTrainingPipeline(test_config)

    @pytest.fixture
    def dataset(self, mock_events):
        return DatasetRecord(dataset_id=1, file_path="datasets/events.csv", schema_mapping={})

    @staticmethod
    def hyperparameters():
        return {"model_type": "logistic_regression", "iterations": 100, "cv_folds": 2}

    def test_end_to_end_training(self, pipeline, dataset, temp_dir):
        """Train, evaluate and persist a logistic regression model."""
        reports = []
        run = TrainingRun(run_id=3, model_id=42)

        result = pipeline.train(run, dataset, self.hyperparameters(),
                                lambda percent, message: reports.append((percent, message)))

        assert set(result) == {"metrics", "artifact_path", "version", "metadata", "hyperparameters"}
        assert result["metadata"] == {"artifact_path": result["artifact_path"]}
        assert result["artifact_path"] == f"models/42/{result['version']}.json"

        metrics = result["metrics"]
        assert 0.7 <= metrics["accuracy"] <= 1.0
        assert 0.0 <= metrics["auc"] <= 1.0
        assert sum(metrics["confusion_matrix"]["matrix"][0]) + sum(metrics["confusion_matrix"]["matrix"][1]) == 20

        hyperparameters = result["hyperparameters"]
        assert hyperparameters["model_type"] == "logistic_regression"
        assert "search_grid" not in hyperparameters
        assert hyperparameters["learning_rate"] in (0.1, 0.3)

        # Every phase is reported in order and progress never goes backwards
        messages = [message for _, message in reports if not message.startswith("Training model (")]
        assert messages == [message for _, message in PIPELINE_PHASES]
        percents = [percent for percent, _ in reports]
        assert percents == sorted(percents)
        assert reports[-1] == (92.0, "Recording training metadata")

    def test_persisted_artifact(self, pipeline, dataset, temp_dir):
        """Artifact descriptor references a loadable model file."""
        result = pipeline.train(TrainingRun(run_id=4, model_id=42), dataset, self.hyperparameters())

        descriptor = json.loads((temp_dir / result["artifact_path"]).read_text())

        assert descriptor["model_id"] == 42
        assert descriptor["training_run_id"] == 4
        assert descriptor["feature_names"] == BASE_FEATURE_NAMES + [
            "category_burglary", "category_theft", "category_vandalism"
        ]
        assert len(descriptor["feature_means"]) == 8
        assert len(descriptor["imputer"]["statistics"]) == 8
        assert descriptor["categories"] == ["burglary", "theft", "vandalism"]
        assert descriptor["metrics"] == result["metrics"]
        assert descriptor["normalization"] == {"type": "l2"}
        assert descriptor["grid_search"]["best_hyperparameters"]
        assert 0 < len(descriptor["feature_importances"]) <= 8
        assert descriptor["feature_importances"][0]["name"] == "Risk Score"

        classifier = joblib.load(temp_dir / descriptor["model_file"])
        assert len(classifier.predict(np.zeros((2, 8)))) == 2

    def test_consecutive_runs_get_distinct_versions(self, pipeline, dataset):
        first = pipeline.train(TrainingRun(run_id=5, model_id=42), dataset, self.hyperparameters())
        second = pipeline.train(TrainingRun(run_id=6, model_id=42), dataset, self.hyperparameters())

        assert second["version"] > first["version"]
        assert pipeline.artifact_store.list_versions(42) == [first["version"], second["version"]]

    def test_memory_guard_downsampling(self, temp_dir, dataset):
        config = TrainingConfig(
            data=DataConfig(storage_root=str(temp_dir)),
            resources=ResourceConfig(memory_threshold_mb=0.001, downsample_rate=0.5),
            environment="testing"
        )
        pipeline = ModelTrainingPipeline(config)

        result = pipeline.train(TrainingRun(run_id=7, model_id=43), dataset, self.hyperparameters())

        assert 0.0 <= result["metrics"]["accuracy"] <= 1.0

    def test_naive_bayes_without_progress(self, pipeline, dataset):
        result = pipeline.train(TrainingRun(run_id=8, model_id=44), dataset, {"model_type": "naive_bayes"})

        assert result["hyperparameters"]["model_type"] == "naive_bayes"
        assert result["metrics"]["accuracy"] >= 0.5

    def test_knn_on_tiny_dataset_clamps_neighbours(self, pipeline, temp_dir):
        """A three-row dataset trains KNN with k reduced to the training size."""
        (temp_dir / "datasets").mkdir(exist_ok=True)
        (temp_dir / "datasets" / "small.csv").write_text(
            "Timestamp,Latitude,Longitude,Category,Risk Score,Label\n"
            "2024-01-01 08:00:00,40.1,-74.0,theft,0.1,0\n"
            "2024-01-01 09:00:00,40.2,-74.1,burglary,0.9,1\n"
            "2024-01-01 10:00:00,40.3,-74.2,theft,0.8,1\n",
            encoding="utf-8"
        )
        dataset = DatasetRecord(dataset_id=13, file_path="datasets/small.csv")

        result = pipeline.train(TrainingRun(run_id=13, model_id=49), dataset, {"model_type": "knn"})

        assert result["hyperparameters"]["model_type"] == "knn"
        assert result["hyperparameters"]["k"] == 2
        assert 0.0 <= result["metrics"]["accuracy"] <= 1.0

        descriptor = json.loads((temp_dir / result["artifact_path"]).read_text())
        assert descriptor["hyperparameters"]["k"] == 2
        assert len(descriptor["feature_means"]) == len(descriptor["feature_names"])
        assert len(descriptor["feature_std_devs"]) == len(descriptor["feature_names"])

    def test_missing_required_column_carries_dataset_context(self, pipeline, temp_dir):
        (temp_dir / "datasets").mkdir(exist_ok=True)
        (temp_dir / "datasets" / "bad.csv").write_text("timestamp,latitude\n2024-01-01,1\n")
        dataset = DatasetRecord(dataset_id=9, file_path="datasets/bad.csv")

        with pytest.raises(MissingRequiredColumn) as exc_info:
            pipeline.train(TrainingRun(run_id=9, model_id=45), dataset, {})

        assert exc_info.value.dataset_id == 9
        assert "dataset_id=9" in str(exc_info.value)

    def test_job_success_lifecycle(self, pipeline, dataset):
        """TrainingJob records running and completed states on the run."""
        reports = []
        run = TrainingRun(run_id=10, model_id=46, hyperparameters=self.hyperparameters())
        job = TrainingJob(pipeline)

        result = job.handle(run, dataset, status_sink=lambda percent, message: reports.append((percent, message)))

        assert run.status is RunStatus.COMPLETED
        assert run.metrics == result["metrics"]
        assert run.hyperparameters == result["hyperparameters"]
        assert run.error_message is None
        assert run.started_at is not None and run.finished_at >= run.started_at
        assert reports[0] == TrainingPhase.PREPARING
        assert reports[-1] == TrainingPhase.FINALIZING

        with pytest.raises(InvalidRunTransition):
            run.mark_running()

    def test_job_failure_lifecycle(self, pipeline, temp_dir, caplog):
        """Failures are recorded on the run and re-raised."""
        reports = []
        run = TrainingRun(run_id=11, model_id=47)
        dataset = DatasetRecord(dataset_id=2, file_path="datasets/missing.csv")

        with caplog.at_level(logging.ERROR, logger="event_training.core.pipeline_orchestrator"):
            with pytest.raises(DatasetFileNotFound):
                TrainingJob(pipeline).handle(run, dataset, {}, lambda p, m: reports.append((p, m)))

        assert run.status is RunStatus.FAILED
        assert "was not found" in run.error_message
        assert run.finished_at is not None
        assert reports == [TrainingPhase.PREPARING]
        assert any(record.getMessage() == "training_job.failed" for record in caplog.records)

    def test_job_missing_path(self, pipeline):
        run = TrainingRun(run_id=12, model_id=48)

        with pytest.raises(DatasetPathMissing):
            TrainingJob(pipeline).handle(run, DatasetRecord(dataset_id=3, file_path=None))

        assert run.status is RunStatus.FAILED
        assert run.to_dict()["status"] == "failed"

    def test_create_training_pipeline(self, temp_dir):
        """Factory loads YAML configuration and builds the pipeline."""
        config_path = temp_dir / "training.yaml"
        config_path.write_text(
            f"data:\n  storage_root: {temp_dir}\nsearch:\n  random_state: 5\n",
            encoding="utf-8"
        )
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        existing_handlers = list(package_logger.handlers)

        try:
            pipeline = create_training_pipeline(str(config_path), "staging")
        finally:
            for handler in package_logger.handlers[:]:
                if handler not in existing_handlers:
                    package_logger.removeHandler(handler)
                    handler.close()

        assert isinstance(pipeline, ModelTrainingPipeline)
        assert pipeline.disk.root == temp_dir
        assert pipeline.config.search.random_state == 5
        assert pipeline.grid_search.random_state == 5
