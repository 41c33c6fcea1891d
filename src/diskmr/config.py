"""
Control options for a MapReduce job.

Thresholds are expressed in bytes. A job accepts either a ControlOptions
instance, a plain dict (snake_case or camelCase keys), or None for defaults.
"""

import logging
import os
from concurrent.futures import Executor
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_BYTES = 10485760

# camelCase spellings accepted in control dicts
_ALIASES = {
    "workerPool": "worker_pool",
    "mapBlockBytes": "map_block_bytes",
    "reduceBlockBytes": "reduce_block_bytes",
    "mapSpillThresholdBytes": "map_spill_threshold_bytes",
    "tempWorkspaceRoot": "temp_workspace_root",
    "numSlots": "num_slots",
}

_ENV_VARS = {
    "DISKMR_MAP_BLOCK_BYTES": "map_block_bytes",
    "DISKMR_REDUCE_BLOCK_BYTES": "reduce_block_bytes",
    "DISKMR_MAP_SPILL_THRESHOLD_BYTES": "map_spill_threshold_bytes",
    "DISKMR_TEMP_DIR": "temp_workspace_root",
    "DISKMR_SLOTS": "num_slots",
}


@dataclass
class ControlOptions:
    """Control block for a job

    Attributes:
        worker_pool: concurrent.futures Executor running tasks, or None to run sequentially
        map_block_bytes: how much input data each map invocation receives
        reduce_block_bytes: how much of a key's values each reduce invocation receives
        map_spill_threshold_bytes: buffered map output size that forces a flush to disk
        temp_workspace_root: directory holding job_<N> workspaces (system temp dir if None)
        num_slots: parallelism used for planning; defaults to the pool's worker count.
            Set it explicitly for executors without a `_max_workers` attribute,
            which otherwise plan for a single slot
    """
    worker_pool: Optional[Executor] = None
    map_block_bytes: int = DEFAULT_BUFFER_BYTES
    reduce_block_bytes: int = DEFAULT_BUFFER_BYTES
    map_spill_threshold_bytes: int = DEFAULT_BUFFER_BYTES
    temp_workspace_root: Optional[str] = None
    num_slots: Optional[int] = None

    def __post_init__(self):
        for name in ("map_block_bytes", "reduce_block_bytes", "map_spill_threshold_bytes"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.num_slots is not None and self.num_slots < 1:
            raise ValueError(f"num_slots must be at least 1, got {self.num_slots}")

    @property
    def slots(self) -> int:
        """Number of concurrent task slots"""
        if self.num_slots is not None:
            return self.num_slots
        if self.worker_pool is not None:
            workers = getattr(self.worker_pool, "_max_workers", None)
            if not workers:
                logger.warning(f"{type(self.worker_pool).__name__} does not report its worker count; "
                               f"planning for 1 slot, set num_slots to override")
                return 1
            return workers
        return 1

    def for_tasks(self) -> "ControlOptions":
        """Copy without the pool handle, safe to ship to worker processes."""
        return replace(self, worker_pool=None, num_slots=self.slots)

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> "ControlOptions":
        kwargs: Dict[str, Any] = {}
        for key, value in options.items():
            name = _ALIASES.get(key, key)
            if name not in cls.__dataclass_fields__:
                raise ValueError(f"Unknown control option: {key}")
            kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "ControlOptions":
        """Build options from DISKMR_* environment variables."""
        environ = os.environ if environ is None else environ
        kwargs: Dict[str, Any] = {}
        for var, name in _ENV_VARS.items():
            if var in environ:
                value = environ[var]
                kwargs[name] = value if name == "temp_workspace_root" else int(value)
        kwargs.update(overrides)
        return cls(**kwargs)

    @classmethod
    def coerce(cls, control) -> "ControlOptions":
        if control is None:
            return cls()
        if isinstance(control, cls):
            return control
        if isinstance(control, Mapping):
            return cls.from_dict(control)
        raise TypeError(f"control must be ControlOptions, a dict or None, not {type(control).__name__}")
