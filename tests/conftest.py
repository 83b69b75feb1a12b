"""
Shared fixtures for the event training test suite.

Provides temporary storage roots and small synthetic event datasets
written as CSV files.
"""

import shutil
import sys
import tempfile
from pathlib import Path
from typing import List, Sequence

import numpy as np
import pandas as pd
import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

EVENT_COLUMNS = ["timestamp", "latitude", "longitude", "category", "risk_score", "label"]


def write_csv(path: Path, header: Sequence[str], rows: List[Sequence]) -> Path:
    """Write rows verbatim so tests control every cell."""
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [",".join(header)]
    lines.extend(",".join("" if cell is None else str(cell) for cell in row) for row in rows)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def generate_event_frame(n_rows: int = 100, seed: int = 42) -> pd.DataFrame:
    """Synthetic events whose label follows the risk score."""
    rng = np.random.default_rng(seed)
    start = pd.Timestamp("2024-01-01 00:00:00")

    timestamps = [start + pd.Timedelta(hours=int(h)) for h in rng.integers(0, 24 * 60, n_rows)]
    risk = rng.uniform(0.0, 1.0, n_rows).round(3)
    labels = (risk > 0.5).astype(int)
    # Guarantee both classes regardless of the draw
    labels[0], labels[1] = 0, 1

    return pd.DataFrame({
        "timestamp": [ts.strftime("%Y-%m-%d %H:%M:%S") for ts in timestamps],
        "latitude": rng.uniform(40.0, 41.0, n_rows).round(5),
        "longitude": rng.uniform(-74.5, -73.5, n_rows).round(5),
        "category": rng.choice(["burglary", "theft", "vandalism"], n_rows),
        "risk_score": risk,
        "label": labels,
    }, columns=EVENT_COLUMNS)


@pytest.fixture
def temp_dir():
    """Create temporary directory for test artifacts."""
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def event_dataset(temp_dir):
    """100-row event dataset stored under datasets/events.csv."""
    df = generate_event_frame()
    path = temp_dir / "datasets" / "events.csv"
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    return path, df
