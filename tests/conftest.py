"""
Pytest configuration and shared fixtures
"""

import os
import shutil
import tempfile

import numpy as np
import pytest

from diskmr.common.data import InputPartition
from diskmr.config import ControlOptions

SPECIES = ["setosa", "versicolor", "virginica"]


@pytest.fixture
def temp_dir():
    """Create temporary directory for test files"""
    dirpath = tempfile.mkdtemp()
    yield dirpath
    shutil.rmtree(dirpath)


@pytest.fixture
def control(temp_dir):
    """Control options keeping job workspaces inside the test directory"""
    workspace_root = os.path.join(temp_dir, "workspaces")
    os.makedirs(workspace_root)
    return ControlOptions(temp_workspace_root=workspace_root)


@pytest.fixture
def iris_rows():
    """150 iris-like rows, 50 per species, in a fixed pseudo-random order"""
    rng = np.random.default_rng(598)
    rows = []
    for i, species in enumerate(SPECIES):
        for _ in range(50):
            rows.append({
                "Sepal.Length": float(np.round(rng.normal(5.0 + i, 0.3), 1)),
                "Sepal.Width": float(np.round(rng.normal(3.0, 0.3), 1)),
                "Species": species,
            })
    order = rng.permutation(len(rows))
    return [rows[i] for i in order]


@pytest.fixture
def iris_partitions(temp_dir, iris_rows):
    """Three input partitions of 50 rows each, one record per file"""
    partitions = []
    for p in range(3):
        chunk = iris_rows[p * 50:(p + 1) * 50]
        records = [(p * 50 + i, row) for i, row in enumerate(chunk)]
        location = os.path.join(temp_dir, "input", f"part{p}")
        partitions.append(InputPartition.write(location, records, name=f"part{p}"))
    return partitions


@pytest.fixture
def sample_text():
    """Sample text for testing"""
    return """The quick brown fox jumps over the lazy dog.
The dog was really lazy.
The fox was very quick and brown.
Quick brown foxes are amazing animals.
Lazy dogs sleep all day."""


@pytest.fixture
def text_partition(temp_dir, sample_text):
    """The sample text as (line_number, line) records, two lines per file"""
    records = list(enumerate(sample_text.split('\n')))
    return InputPartition.write(os.path.join(temp_dir, "text"), records, records_per_file=2)


@pytest.fixture
def examples_dir():
    return os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "examples")
