"""
Dynamic Function Loader for MapReduce job files
Loads user-provided Python modules containing setup, map and reduce routines
"""

import importlib.util
import os
import sys

from diskmr.combiners import Combiner, FunctionCombiner, resolve_combiner
from diskmr.errors import JobFileError


class FunctionLoader:
    """Dynamically loads user-provided routines from a Python job file

    A job file must define `map_fn(ctx)`. It may define `setup(ctx)`, a
    `params` dict, and a reduction as either `reduce` (a Combiner instance or
    built-in combiner name) or any of `pre_fn(ctx)`, `reduce_fn(ctx, values)`
    and `post_fn(ctx)`.
    """

    def __init__(self, job_file: str):
        """
        Initialize the function loader

        Args:
            job_file: Path to the user's Python job file
        """
        self.job_file = job_file
        self.module = None

    def load_module(self):
        """
        Dynamically load user-provided module

        Returns:
            The loaded module object

        Raises:
            JobFileError: If the job file doesn't exist or can't be imported
        """
        if not os.path.exists(self.job_file):
            raise JobFileError(f"Job file not found: {self.job_file}")

        module_name = f"diskmr_job_{os.path.splitext(os.path.basename(self.job_file))[0]}"
        spec = importlib.util.spec_from_file_location(module_name, self.job_file)
        if spec is None or spec.loader is None:
            raise JobFileError(f"Failed to load job file: {self.job_file}")
        module = importlib.util.module_from_spec(spec)
        # registered so routines defined in the file can be pickled by reference
        sys.modules[module_name] = module
        spec.loader.exec_module(module)
        self.module = module
        return module

    def _get(self, name: str):
        if not self.module:
            self.load_module()
        return getattr(self.module, name, None)

    def get_map_function(self):
        """
        Get map routine from loaded module

        Raises:
            JobFileError: If module doesn't define 'map_fn'
        """
        map_fn = self._get("map_fn")
        if map_fn is None:
            raise JobFileError("Job file must define 'map_fn'")
        return map_fn

    def get_setup_function(self):
        return self._get("setup")

    def get_params(self) -> dict:
        return dict(self._get("params") or {})

    def get_combiner(self) -> Combiner:
        """
        Get the reduction from loaded module

        Returns:
            The module's `reduce`, a FunctionCombiner built from pre_fn/reduce_fn/post_fn,
            or a pass-through combiner when neither is defined
        """
        reduce = self._get("reduce")
        if reduce is not None:
            return resolve_combiner(reduce)

        phases = [self._get(name) for name in ("pre_fn", "reduce_fn", "post_fn")]
        if any(phases):
            return FunctionCombiner(*phases)
        return resolve_combiner(None)
