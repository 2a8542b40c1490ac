import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

DATA_DIR = Path(__file__).resolve().parents[1] / "Data"
sys.path.insert(0, str(DATA_DIR))

from moco_utils import prepare_positions  # noqa: E402

METHODS = ["Pre-MoCo", "MCFLIRT", "MC-MoCo"]
MARKERS = ["R-SFG", "L-SFG"]
NOISE = {"Pre-MoCo": 1.5, "MCFLIRT": 0.7, "MC-MoCo": 0.4}


def make_positions(seed: int = 0, n_volumes: int = 4) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    records = []
    for group in ["A", "B"]:
        for number in range(1, 5):
            subject = f"{group}_{number}"
            subject_scale = rng.uniform(0.6, 1.4)
            for marker in MARKERS:
                center = rng.normal(0.0, 30.0, size=3)
                for method in METHODS:
                    for volume in range(1, n_volumes + 1):
                        x, y, z = center + rng.normal(0.0, NOISE[method] * subject_scale, size=3)
                        records.append({
                            "Subject": subject,
                            "Marker": marker,
                            "Method": method,
                            "Volume": str(volume),
                            "x": x,
                            "y": y,
                            "z": z,
                        })
    return prepare_positions(pd.DataFrame(records), METHODS)


@pytest.fixture
def positions():
    return make_positions()


@pytest.fixture
def analysis_params():
    return {
        "method_levels": METHODS,
        "group_separator": "_",
        "reml": True,
        "contrast_adjustment": "single-step",
        "alpha": 0.05,
    }
