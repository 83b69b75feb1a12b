# /event-training/src/event_training/core/row_preprocessor.py

"""
DatasetRowPreprocessor: Streaming Feature Extraction for Event Datasets

Reads a CSV of geotagged event records in bounded chunks and materialises a
row buffer of (feature-vector, label) pairs without holding the raw file in
memory. Rows are spooled to a temporary file that stays in memory while
small and spills to disk as it grows.

Key Features:
- Two streaming passes: schema/category analysis, then feature encoding
- Header normalisation tolerant of BOMs, casing, punctuation and duplicates
- Bounded category vocabulary with an overflow bucket
- Derived risk score when the dataset carries none
- Label generation from the risk distribution when labels are missing

Architecture:
- pandas chunked CSV reader with every cell read as a string
- JSON-lines spool (tempfile.SpooledTemporaryFile) behind RowBuffer
- Labels resolved lazily on iteration so thresholds apply to the whole file
"""

import gc
import json
import logging
import math
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..utils.timestamps import epoch_seconds, parse_timestamp
from .errors import DatasetError
from .hyperparameter_resolver import round_half_away_from_zero

MAX_TRACKED_CATEGORIES = 64
CATEGORY_OVERFLOW_KEY = "__other__"
DEFAULT_CATEGORY_KEY = "__default__"
SPOOL_MEMORY_LIMIT = 262_144
DEFAULT_CHUNK_SIZE = 5_000
NO_GENERATED_LABELS = 1.1

REQUIRED_COLUMNS = ("timestamp", "latitude", "longitude", "category")
BASE_FEATURE_NAMES = ["hour_of_day", "day_of_week", "latitude", "longitude", "risk_score"]

COLUMN_DEFAULTS = (
    ("timestamp", "timestamp", "timestamp"),
    ("latitude", "latitude", "latitude"),
    ("longitude", "longitude", "longitude"),
    ("category", "category", "category"),
    ("risk_score", "risk", "risk_score"),
    ("label", "label", "label"),
)

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")
_REPEATED_UNDERSCORES = re.compile(r"_+")


def normalize_column_name(column: str) -> str:
    """'Event-Time / UTC' -> 'event_time_utc'."""
    column = column.lstrip("\ufeff").strip()
    if not column:
        return ""

    column = column.lower().replace("-", " ").replace("/", " ")
    column = _NON_ALPHANUMERIC.sub("_", column)
    column = _REPEATED_UNDERSCORES.sub("_", column)
    return column.strip("_")


def resolve_column_map(schema_mapping: Optional[Mapping[str, Any]] = None) -> Dict[str, str]:
    """
    Map logical columns to normalised header names.

    ``schema_mapping`` uses the keys timestamp, latitude, longitude, category,
    risk and label; blank or non-string entries fall back to the defaults.
    """
    mapping = schema_mapping if isinstance(schema_mapping, Mapping) else {}
    column_map = {}

    for logical, mapping_key, default in COLUMN_DEFAULTS:
        value = mapping.get(mapping_key, default)
        if not isinstance(value, str) or not value.strip():
            value = default

        normalized = normalize_column_name(value) or normalize_column_name(default) or default
        column_map[logical] = normalized

    return column_map


def format_category_feature_name(category: str) -> str:
    if category == CATEGORY_OVERFLOW_KEY:
        return "other"

    normalized = _NON_ALPHANUMERIC.sub("_", category.lower())
    normalized = _REPEATED_UNDERSCORES.sub("_", normalized).strip("_")
    return normalized or "unknown"


def build_feature_names(categories: Sequence[str]) -> List[str]:
    return BASE_FEATURE_NAMES + [f"category_{format_category_feature_name(c)}" for c in categories]


def extract_numeric(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, np.integer, np.floating)):
        value = float(value)
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return None
        try:
            number = float(trimmed)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def normalize_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


class BufferedRow(NamedTuple):
    features: List[float]
    label: int
    timestamp: Optional[str] = None


class RowBuffer:
    """
    Ordered, append-only spool of encoded dataset rows.

    Labels are resolved on iteration: an explicit label wins; otherwise the
    row is positive when its risk reaches the generated threshold. When no
    positive exists at all, the first row carrying the maximum risk is
    forced positive.
    """

    def __init__(self, spool_limit: int = SPOOL_MEMORY_LIMIT, include_timestamps: bool = False):
        self._file = tempfile.SpooledTemporaryFile(max_size=spool_limit, mode="w+", encoding="utf-8")
        self.include_timestamps = include_timestamps
        self.threshold = NO_GENERATED_LABELS
        self.max_risk = 0.0
        self.force_max_risk_positive = False
        self._row_count = 0
        self._closed = False

    @classmethod
    def from_rows(cls, rows: Iterable[Tuple[Sequence[float], Optional[int]]],
                  spool_limit: int = SPOOL_MEMORY_LIMIT) -> "RowBuffer":
        """Buffer already-encoded ``(features, label)`` pairs."""
        buffer = cls(spool_limit=spool_limit)
        for features, label in rows:
            buffer.append(features, label, risk=0.0)
        return buffer

    def append(self, features: Sequence[float], raw_label: Optional[int],
               risk: float, timestamp: Optional[str] = None) -> None:
        payload = {
            "features": [float(value) for value in features],
            "risk": float(risk),
            "raw_label": raw_label,
        }
        if self.include_timestamps and timestamp is not None:
            payload["timestamp"] = timestamp

        self._file.write(json.dumps(payload) + "\n")
        self._row_count += 1

    def finalize(self, threshold: float, max_risk: float, force_max_risk_positive: bool) -> "RowBuffer":
        self.threshold = threshold
        self.max_risk = max_risk
        self.force_max_risk_positive = force_max_risk_positive
        return self

    def __len__(self) -> int:
        return self._row_count

    def raw_records(self) -> Iterator[Dict[str, Any]]:
        """Decoded spool records without label resolution."""
        if self._closed:
            raise ValueError("Row buffer has been closed")

        self._file.seek(0)
        for line in iter(self._file.readline, ""):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except ValueError as e:
                raise RowBufferCorrupted(f"Failed to decode buffered dataset row: {e}") from e

            if isinstance(record, dict) and "features" in record and "risk" in record:
                yield record

        self._file.seek(0, 2)

    def __iter__(self) -> Iterator[BufferedRow]:
        positive_forced = False

        for record in self.raw_records():
            risk = float(record["risk"])
            label = self._resolve_label(record.get("raw_label"), risk)

            if self.force_max_risk_positive and not positive_forced and abs(risk - self.max_risk) < 1e-9:
                label = 1
                positive_forced = True

            yield BufferedRow(
                features=[float(value) for value in record["features"]],
                label=label,
                timestamp=record.get("timestamp") if self.include_timestamps else None
            )

    def _resolve_label(self, raw_label: Any, risk: float) -> int:
        numeric = extract_numeric(raw_label)
        if numeric is not None:
            return 1 if numeric > 0 else 0

        if self.threshold > 1.0:
            return 0

        return 1 if (risk >= self.threshold and risk > 0.0) else 0

    def close(self) -> None:
        if not self._closed:
            self._file.close()
            self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class FeatureBuffer:
    """In-memory split of feature vectors and labels."""

    def __init__(self):
        self.samples: List[List[float]] = []
        self.labels: List[int] = []

    def append(self, features: Sequence[float], label: int) -> None:
        self.samples.append([float(value) for value in features])
        self.labels.append(int(label))

    def __len__(self) -> int:
        return len(self.labels)

    def __iter__(self) -> Iterator[Tuple[List[float], int]]:
        return iter(zip(self.samples, self.labels))

    def to_arrays(self) -> Tuple[np.ndarray, np.ndarray]:
        feature_count = len(self.samples[0]) if self.samples else 0
        samples = np.asarray(self.samples, dtype=float).reshape(len(self.samples), feature_count)
        return samples, np.asarray(self.labels, dtype=int)


@dataclass
class DatasetAnalysis:
    """Result of the first streaming pass."""
    category_counts: Dict[str, int] = field(default_factory=dict)
    min_time: Optional[float] = None
    max_time: Optional[float] = None
    has_numeric_risk: bool = False
    overflowed_categories: bool = False
    processed_rows: int = 0

    @property
    def min_count(self) -> int:
        return min(self.category_counts.values()) if self.category_counts else 0

    @property
    def max_count(self) -> int:
        return max(self.category_counts.values()) if self.category_counts else 0

    @property
    def time_span(self) -> Optional[float]:
        if self.min_time is None or self.max_time is None:
            return None
        return max(self.max_time - self.min_time, 0.0)


@dataclass
class PreparedDataset:
    buffer: RowBuffer
    feature_names: List[str]
    categories: List[str]
    category_overflowed: bool


class DatasetRowPreprocessor:
    """
    Streams a CSV dataset into a RowBuffer.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.chunk_size = int(self.config.get("chunk_size", DEFAULT_CHUNK_SIZE))
        self.max_tracked_categories = int(self.config.get("max_tracked_categories", MAX_TRACKED_CATEGORIES))
        self.spool_limit = int(self.config.get("spool_memory_limit", SPOOL_MEMORY_LIMIT))
        self.gc_interval_rows = int(self.config.get("gc_interval_rows", 2_500))
        self.logger = logging.getLogger(__name__)

    def prepare_training_data(self, path: Union[str, Path], column_map: Mapping[str, str]) -> PreparedDataset:
        """
        Analyse and encode a training dataset.

        Raises:
            MissingRequiredColumn: If a required column is absent
            DatasetEmpty: If no usable row was produced
        """
        analysis = self._analyse_csv(path, column_map)
        categories = self._derive_category_list(analysis.category_counts)
        feature_names = build_feature_names(categories)
        buffer = self._build_buffer(path, column_map, analysis, categories, include_timestamps=True)

        if len(buffer) == 0:
            buffer.close()
            raise DatasetEmpty("Dataset file does not contain any rows.", file_path=str(path), row_count=0)

        self.logger.info("preprocessor.training_data_prepared", extra={
            "file_path": str(path),
            "row_count": len(buffer),
            "feature_count": len(feature_names),
            "category_count": len(categories),
            "category_overflowed": analysis.overflowed_categories,
            "generated_label_threshold": buffer.threshold
        })

        return PreparedDataset(
            buffer=buffer,
            feature_names=feature_names,
            categories=categories,
            category_overflowed=analysis.overflowed_categories
        )

    def prepare_evaluation_data(self, path: Union[str, Path], column_map: Mapping[str, str],
                                categories: Sequence[str]) -> RowBuffer:
        """Encode a dataset against an existing category vocabulary."""
        analysis = self._analyse_csv(path, column_map)
        return self._build_buffer(path, column_map, analysis, list(categories), include_timestamps=False)

    def _iter_csv_rows(self, path: Union[str, Path], column_map: Mapping[str, str]
                       ) -> Iterator[Tuple[Dict[str, Optional[int]], Tuple[Any, ...]]]:
        """Yield (column indexes, raw row) for each data row of the file."""
        try:
            reader = pd.read_csv(
                path,
                header=None,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                chunksize=self.chunk_size,
                encoding="utf-8-sig",
                on_bad_lines="skip"
            )
        except pd.errors.EmptyDataError:
            return
        except FileNotFoundError as e:
            raise DatasetFileNotFound(f'Unable to open dataset file "{path}".', file_path=str(path)) from e

        indexes: Optional[Dict[str, Optional[int]]] = None
        with reader:
            for chunk in reader:
                for row in chunk.itertuples(index=False, name=None):
                    if indexes is None:
                        header = self._normalize_header_row(row)
                        indexes = self._map_column_indexes(header, column_map)
                        self._assert_required_columns(indexes, path)
                        continue
                    yield indexes, row

    def _analyse_csv(self, path: Union[str, Path], column_map: Mapping[str, str]) -> DatasetAnalysis:
        analysis = DatasetAnalysis()
        counts = analysis.category_counts
        tracked = 0

        for indexes, row in self._iter_csv_rows(path, column_map):
            timestamp = parse_timestamp(self._extract_value(row, indexes.get("timestamp")))
            if timestamp is None:
                continue

            category = normalize_string(self._extract_value(row, indexes.get("category")))
            if category:
                if category in counts:
                    counts[category] += 1
                elif tracked < self.max_tracked_categories:
                    counts[category] = 1
                    tracked += 1
                else:
                    analysis.overflowed_categories = True
                    counts[CATEGORY_OVERFLOW_KEY] = counts.get(CATEGORY_OVERFLOW_KEY, 0) + 1

            seconds = epoch_seconds(timestamp)
            analysis.min_time = seconds if analysis.min_time is None else min(analysis.min_time, seconds)
            analysis.max_time = seconds if analysis.max_time is None else max(analysis.max_time, seconds)

            if not analysis.has_numeric_risk:
                risk = extract_numeric(self._extract_value(row, indexes.get("risk_score")))
                analysis.has_numeric_risk = risk is not None

            analysis.processed_rows += 1
            if analysis.processed_rows % 5_000 == 0:
                gc.collect()

        if not counts:
            counts[DEFAULT_CATEGORY_KEY] = 0

        self.logger.debug("preprocessor.analysis_completed", extra={
            "file_path": str(path),
            "processed_rows": analysis.processed_rows,
            "tracked_categories": tracked,
            "overflowed_categories": analysis.overflowed_categories,
            "has_numeric_risk": analysis.has_numeric_risk
        })

        return analysis

    def _derive_category_list(self, counts: Mapping[str, int]) -> List[str]:
        overflow = CATEGORY_OVERFLOW_KEY in counts
        categories = sorted(
            key for key in counts if key not in (CATEGORY_OVERFLOW_KEY, DEFAULT_CATEGORY_KEY)
        )
        if overflow:
            categories.append(CATEGORY_OVERFLOW_KEY)
        return categories

    def _build_buffer(self, path: Union[str, Path], column_map: Mapping[str, str],
                      analysis: DatasetAnalysis, categories: List[str],
                      include_timestamps: bool) -> RowBuffer:
        buffer = RowBuffer(spool_limit=self.spool_limit, include_timestamps=include_timestamps)

        category_index = {category: index for index, category in enumerate(categories)}
        histogram = np.zeros(101, dtype=int)
        max_risk = 0.0
        raw_positive_count = 0
        needs_generated = False

        for indexes, row in self._iter_csv_rows(path, column_map):
            timestamp = parse_timestamp(self._extract_value(row, indexes.get("timestamp")))
            if timestamp is None:
                continue

            hour = timestamp.hour / 23.0
            day_of_week = (timestamp.isoweekday() - 1) / 6.0
            latitude = extract_numeric(self._extract_value(row, indexes.get("latitude"))) or 0.0
            longitude = extract_numeric(self._extract_value(row, indexes.get("longitude"))) or 0.0

            category = normalize_string(self._extract_value(row, indexes.get("category")))
            encoded_category = category
            if (encoded_category and encoded_category not in category_index
                    and CATEGORY_OVERFLOW_KEY in category_index):
                encoded_category = CATEGORY_OVERFLOW_KEY

            existing_risk = extract_numeric(self._extract_value(row, indexes.get("risk_score")))
            if analysis.has_numeric_risk and existing_risk is not None:
                risk = max(0.0, min(1.0, existing_risk))
            else:
                risk = self._compute_risk_score(encoded_category or category, timestamp, analysis)

            max_risk = max(max_risk, risk)
            histogram[max(0, min(100, int(math.floor(risk * 100))))] += 1

            raw_label = extract_numeric(self._extract_value(row, indexes.get("label")))
            normalized_label = round_half_away_from_zero(raw_label) if raw_label is not None else None
            if normalized_label is None:
                needs_generated = True
            elif normalized_label > 0:
                raw_positive_count += 1

            features = [hour, day_of_week, latitude, longitude, risk]
            if categories:
                encoded = [0.0] * len(categories)
                if encoded_category in category_index:
                    encoded[category_index[encoded_category]] = 1.0
                features.extend(encoded)

            buffer.append(features, normalized_label, risk, timestamp.isoformat())

            if len(buffer) % self.gc_interval_rows == 0:
                gc.collect()

        if len(buffer) == 0:
            return buffer

        threshold = (
            self._determine_risk_threshold(histogram, len(buffer))
            if needs_generated else NO_GENERATED_LABELS
        )

        final_positive_count = raw_positive_count
        if needs_generated and threshold <= 1.0:
            final_positive_count += self._count_generated_positives(buffer, threshold)

        force_positive = final_positive_count == 0 and max_risk > 0.0
        if force_positive:
            self.logger.warning("preprocessor.forcing_max_risk_positive", extra={
                "file_path": str(path),
                "max_risk": max_risk,
                "row_count": len(buffer)
            })

        return buffer.finalize(threshold, max_risk, force_positive)

    @staticmethod
    def _determine_risk_threshold(histogram: np.ndarray, total_count: int) -> float:
        """Risk threshold at the 75th-percentile histogram bin."""
        active_bins = int(np.count_nonzero(histogram))
        if active_bins <= 1 or total_count == 0:
            return NO_GENERATED_LABELS

        target_rank = int(math.floor(0.75 * max(total_count - 1, 0))) + 1
        cumulative = np.cumsum(histogram)
        bin_index = int(np.searchsorted(cumulative, target_rank))
        return bin_index / 100 if bin_index <= 100 else 0.0

    @staticmethod
    def _count_generated_positives(buffer: RowBuffer, threshold: float) -> int:
        positives = 0
        for record in buffer.raw_records():
            if record.get("raw_label") is not None:
                continue
            risk = float(record["risk"])
            if risk >= threshold and risk > 0.0:
                positives += 1
        return positives

    @staticmethod
    def _compute_risk_score(category: str, timestamp: pd.Timestamp, analysis: DatasetAnalysis) -> float:
        """0.6 * category frequency score + 0.4 * recency score, clamped to [0, 1]."""
        counts = analysis.category_counts
        count = 0

        if category:
            if category in counts:
                count = counts[category]
            elif CATEGORY_OVERFLOW_KEY in counts:
                count = counts[CATEGORY_OVERFLOW_KEY]
        elif counts:
            count = analysis.min_count

        if analysis.max_count == analysis.min_count:
            category_score = 0.5 if analysis.max_count > 0 else 0.0
        else:
            category_score = (count - analysis.min_count) / max(analysis.max_count - analysis.min_count, 1)

        recency_score = 0.5
        span = analysis.time_span
        if span is not None and span > 0 and analysis.min_time is not None:
            recency_score = (epoch_seconds(timestamp) - analysis.min_time) / span
            recency_score = max(0.0, min(1.0, recency_score))

        return max(0.0, min(1.0, 0.6 * category_score + 0.4 * recency_score))

    @staticmethod
    def _normalize_header_row(row: Sequence[Any]) -> List[str]:
        normalized: List[str] = []
        used = set()

        for value in row:
            if not isinstance(value, str):
                normalized.append("")
                continue

            column = normalize_column_name(value) or value.strip()
            base = column
            suffix = 1
            while column and column in used:
                suffix += 1
                column = f"{base}_{suffix}"

            if column:
                used.add(column)
            normalized.append(column)

        return normalized

    @staticmethod
    def _map_column_indexes(header: Sequence[str], column_map: Mapping[str, str]) -> Dict[str, Optional[int]]:
        positions = {column: index for index, column in enumerate(header) if column}
        return {
            logical: positions.get(column) if isinstance(column, str) and column else None
            for logical, column in column_map.items()
        }

    @staticmethod
    def _assert_required_columns(indexes: Mapping[str, Optional[int]], path: Union[str, Path]) -> None:
        for required in REQUIRED_COLUMNS:
            if indexes.get(required) is None:
                raise MissingRequiredColumn(
                    f'Dataset is missing required column "{required}".', file_path=str(path)
                )

    @staticmethod
    def _extract_value(row: Sequence[Any], index: Optional[int]) -> Any:
        if index is None or index >= len(row):
            return None
        value = row[index]
        if isinstance(value, float) and math.isnan(value):
            return None
        return value


# Custom exceptions
class DatasetFileNotFound(DatasetError):
    """Raised when the dataset file cannot be found or opened."""
    pass


class DatasetPathMissing(DatasetError):
    """Raised when a dataset record has no file path."""
    pass


class MissingRequiredColumn(DatasetError):
    """Raised when a required column is absent from the header."""
    pass


class DatasetEmpty(DatasetError):
    """Raised when a dataset produces zero usable rows."""
    pass


class RowBufferCorrupted(DatasetError):
    """Raised when a spooled row cannot be decoded."""
    pass
