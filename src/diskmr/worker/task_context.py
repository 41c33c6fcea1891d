"""
Per-task execution context.

A fresh TaskContext is created for every map or reduce task and passed by
reference into user routines. It carries the collect/counter/flush primitives,
the task's bound parameters, the current input (keys/values or key/values) and
the per-key accumulator state used by combiners. Contexts are never shared
between tasks.
"""

import copy
import logging
import pickle
from collections import defaultdict
from typing import Any, Dict, List, Optional

from diskmr.common.counters import increment_counter
from diskmr.common.intermediate import PICKLE_PROTOCOL, IntermediateStore, key_hash

logger = logging.getLogger(__name__)


class TaskContext:
    """Mutable state owned by exactly one task"""

    def __init__(self, task_id: str, phase: str, store: IntermediateStore, counters_dir: str,
                 write_kv_separately: bool, params: Optional[Dict[str, Any]] = None,
                 data_source_name: Optional[str] = None):
        """
        Args:
            task_id: Unique task identifier, used as the task's subdirectory name
            phase: "map" or "reduce"
            store: Scratch tree this task writes into
            counters_dir: Root of the job's counters tree
            write_kv_separately: Store the key once in key.meta and bare values in
                chunks (map side), instead of (key, value) records (reduce side)
            params: User parameters; deep-copied so tasks never share them
            data_source_name: Name of the input partition being mapped
        """
        self.task_id = task_id
        self.phase = phase
        self.store = store
        self.counters_dir = counters_dir
        self.write_kv_separately = write_kv_separately
        self.data_source_name = data_source_name

        self._pristine_params = copy.deepcopy(params or {})
        self.params: Dict[str, Any] = {}
        self.reset_params()

        # map input
        self.keys: List[Any] = []
        # map input, or the current reduce sub-block
        self.values: List[Any] = []
        # reduce key and combiner accumulator
        self.key: Any = None
        self.state: Dict[str, Any] = {}

        self._buffers: Dict[str, list] = defaultdict(list)
        self._keys_written = set()

    @property
    def is_reduce(self) -> bool:
        return self.phase == "reduce"

    def reset_params(self):
        """Rebind parameters to fresh copies of their original values."""
        self.params = copy.deepcopy(self._pristine_params)

    def reset_state(self):
        self.state = {}

    def collect(self, key: Any, value: Any):
        """Buffer one emitted (key, value) pair for the key's bucket."""
        hash_ = key_hash(key)
        if self.write_kv_separately:
            if hash_ not in self._keys_written:
                self.store.write_key(hash_, self.task_id, key)
                self._keys_written.add(hash_)
            self._buffers[hash_].append(value)
        else:
            self.store.task_dir(hash_, self.task_id)
            self._buffers[hash_].append((key, value))

    def counter(self, group: str, field: str, delta: int = 1) -> int:
        return increment_counter(self.counters_dir, group, field, self.task_id, delta)

    def buffer_size(self) -> int:
        """Approximate in-memory size of buffered emissions, in bytes."""
        if not self._buffers:
            return 0
        return len(pickle.dumps(dict(self._buffers), protocol=PICKLE_PROTOCOL))

    def pending(self) -> int:
        """Number of buffered emissions not yet flushed."""
        return sum(len(v) for v in self._buffers.values())

    def flush(self) -> int:
        """
        Spill every non-empty buffer as a new value chunk

        Returns:
            Number of chunk files written (0 when nothing was buffered)
        """
        written = 0
        for hash_ in list(self._buffers):
            values = self._buffers.pop(hash_)
            if not values:
                continue
            self.store.write_chunk(hash_, self.task_id, values)
            written += 1
        if written:
            logger.debug(f"Task {self.task_id}: flushed {written} chunks")
        return written
