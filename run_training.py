#!/usr/bin/env python3
"""
Train an event classification model from a stored dataset.

Runs one training run through TrainingJob and prints the result as JSON.
"""

import argparse
import json
import sys
from pathlib import Path

# Add src to path for imports
sys.path.append(str(Path(__file__).parent / "src"))

from event_training import DatasetRecord, TrainingPipelineError, TrainingRun, create_training_job
from event_training.config import ConfigurationError


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Train an event classification model")
    parser.add_argument("--dataset", required=True,
                        help="Dataset CSV path relative to the storage root")
    parser.add_argument("--dataset-id", default="cli", help="Dataset identifier")
    parser.add_argument("--schema-mapping", default=None,
                        help="JSON object mapping logical columns to CSV headers")
    parser.add_argument("--model-id", default="default", help="Model identifier")
    parser.add_argument("--run-id", default=None, help="Training run identifier")
    parser.add_argument("--hyperparameters", default="{}",
                        help="JSON object of raw hyperparameters")
    parser.add_argument("--config", default=None, help="Path to a YAML configuration file")
    parser.add_argument("--environment", default="development",
                        help="Environment name (development, staging, production)")
    return parser.parse_args(argv)


def _json_object(value: str, option: str) -> dict:
    parsed = json.loads(value) if value else {}
    if not isinstance(parsed, dict):
        raise ValueError(f"{option} must be a JSON object")
    return parsed


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        hyperparameters = _json_object(args.hyperparameters, "--hyperparameters")
        schema_mapping = _json_object(args.schema_mapping, "--schema-mapping")
    except ValueError as e:
        print(f"Invalid argument: {e}", file=sys.stderr)
        return 2

    try:
        job = create_training_job(args.config, args.environment)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    run = TrainingRun(run_id=args.run_id or args.model_id, model_id=args.model_id)
    dataset = DatasetRecord(dataset_id=args.dataset_id, file_path=args.dataset,
                            schema_mapping=schema_mapping)

    def report_progress(percent: float, message: str) -> None:
        print(f"[{percent:5.1f}%] {message}", file=sys.stderr)

    try:
        result = job.handle(run, dataset, hyperparameters, report_progress)
    except TrainingPipelineError as e:
        print(f"Training failed: {e}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
