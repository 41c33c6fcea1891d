"""
Output sinks.

A sink receives materialized (key, value) records through append(). Two kinds
exist: an in-memory list and a local-disk directory of record files that can
be read back as an input partition for another job.
"""

import logging
import os
import tempfile
from collections import OrderedDict
from typing import Any, Iterable, List, Optional, Tuple

from diskmr.combiners import LOCAL_DISK, MEMORY
from diskmr.common.data import RECORD_SUFFIX, InputPartition
from diskmr.common.intermediate import dump_file, key_hash, load_file

logger = logging.getLogger(__name__)

KEYS_PER_BIN = 1000


class Sink:
    kind = ""

    def append(self, records: Iterable[Tuple[Any, Any]]):
        raise NotImplementedError

    def records(self) -> List[Tuple[Any, Any]]:
        raise NotImplementedError

    def keys(self) -> list:
        return [k for k, _ in self.records()]

    def __len__(self):
        return len(self.records())


class MemorySink(Sink):
    """Keeps every appended record in a list"""

    kind = MEMORY

    def __init__(self):
        self.data: List[Tuple[Any, Any]] = []

    def append(self, records):
        self.data.extend(tuple(r) for r in records)

    def records(self):
        return list(self.data)


class LocalDiskSink(Sink):
    """
    Directory of pickled record files, one file per key, spread over bins.

    With a single bin files sit directly under `path`; otherwise they go to
    bin-NNNN subdirectories chosen from the key hash.
    """

    kind = LOCAL_DISK

    def __init__(self, path: str, n_bins: int = 1):
        if n_bins < 1:
            raise ValueError(f"n_bins must be at least 1, got {n_bins}")
        self.path = path
        self.n_bins = n_bins
        os.makedirs(path, exist_ok=True)

    def _file_for(self, hash_: str) -> str:
        if self.n_bins == 1:
            directory = self.path
        else:
            directory = os.path.join(self.path, f"bin-{int(hash_, 16) % self.n_bins:04d}")
            os.makedirs(directory, exist_ok=True)
        return os.path.join(directory, f"{hash_}{RECORD_SUFFIX}")

    def append(self, records):
        grouped: "OrderedDict[str, list]" = OrderedDict()
        for key, value in records:
            grouped.setdefault(key_hash(key), []).append((key, value))

        for hash_, group in grouped.items():
            file_path = self._file_for(hash_)
            if os.path.exists(file_path):
                group = load_file(file_path) + group
            dump_file(file_path, group)

    def as_partition(self, name: Optional[str] = None) -> InputPartition:
        return InputPartition.from_directory(self.path, name=name)

    def records(self):
        partition = self.as_partition()
        return partition.block().load_records(range(len(partition.files)))


def make_sink(output, n_keys: int, job_number: int) -> Sink:
    """
    Resolve the job's output argument to a live sink

    Args:
        output: A Sink, a path for a LocalDiskSink, or None for a temp directory
        n_keys: Number of distinct output keys, used to size the bins
        job_number: Ordinal of the job, used to name a temp output directory

    Returns:
        Sink ready for append()
    """
    if isinstance(output, Sink):
        return output

    n_bins = max(1, n_keys // KEYS_PER_BIN)
    if output is None:
        path = tempfile.mkdtemp(prefix=f"job{job_number}_")
    elif isinstance(output, (str, os.PathLike)):
        path = os.fspath(output)
    else:
        raise TypeError(f"output must be a Sink, a path or None, not {type(output).__name__}")

    logger.info(f"Writing output to {path} with {n_bins} bins")
    return LocalDiskSink(path, n_bins=n_bins)
