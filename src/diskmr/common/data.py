"""
Input partitions and blocks.

A partition is a directory of record files. Each record file is a pickled list
of (key, value) pairs; the engine always reads whole files and uses file size
as its only load balancing signal.
"""

import os
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from diskmr.common.intermediate import dump_file, load_file

RECORD_SUFFIX = ".pkl"


@dataclass
class InputPartition:
    """A named source: base location plus ordered record files and their sizes"""
    name: str
    location: str
    files: List[str] = field(default_factory=list)
    sizes: List[int] = field(default_factory=list)

    def __post_init__(self):
        if len(self.files) != len(self.sizes):
            raise ValueError(f"Partition {self.name}: {len(self.files)} files but {len(self.sizes)} sizes")

    @classmethod
    def from_directory(cls, location: str, name: Optional[str] = None) -> "InputPartition":
        """Scan a directory tree for record files, in sorted path order."""
        if not os.path.isdir(location):
            raise FileNotFoundError(f"Input partition not found: {location}")

        files = []
        for dirpath, dirnames, filenames in os.walk(location):
            dirnames.sort()
            for filename in sorted(filenames):
                if filename.endswith(RECORD_SUFFIX):
                    files.append(os.path.relpath(os.path.join(dirpath, filename), location))
        sizes = [os.path.getsize(os.path.join(location, f)) for f in files]
        return cls(name=name or os.path.basename(os.path.normpath(location)),
                   location=location, files=files, sizes=sizes)

    @classmethod
    def write(cls, location: str, records: Iterable[Tuple], name: Optional[str] = None,
              records_per_file: int = 1) -> "InputPartition":
        """Write (key, value) records as a new partition directory."""
        os.makedirs(location, exist_ok=True)
        batch: list = []
        file_num = 0

        def write_batch():
            nonlocal file_num
            file_num += 1
            dump_file(os.path.join(location, f"record-{file_num:06d}{RECORD_SUFFIX}"), batch)

        for record in records:
            batch.append(tuple(record))
            if len(batch) >= records_per_file:
                write_batch()
                batch = []
        if batch:
            write_batch()
        return cls.from_directory(location, name=name)

    def block(self, indices: Optional[Sequence[int]] = None) -> "InputBlock":
        if indices is None:
            indices = range(len(self.files))
        return InputBlock(source_name=self.name, location=self.location,
                          files=tuple(self.files[i] for i in indices),
                          sizes=tuple(self.sizes[i] for i in indices))


@dataclass(frozen=True)
class InputBlock:
    """A contiguous subset of one partition's files, handed to exactly one map task"""
    source_name: str
    location: str
    files: Tuple[str, ...]
    sizes: Tuple[int, ...]

    @property
    def total_size(self) -> int:
        return sum(self.sizes)

    def load_records(self, indices: Sequence[int]) -> List[Tuple]:
        """Load and concatenate the records of the selected files."""
        records = []
        for i in indices:
            records.extend(load_file(os.path.join(self.location, self.files[i])))
        return records
