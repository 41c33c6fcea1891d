"""
Reduce Task Executor
Runs the combiner protocol over a task's key buckets, one key at a time,
and writes the post-reduction records into the reduce scratch tree
"""

import logging
import time
from typing import Any, Dict, Optional, Sequence

import psutil

from diskmr.combiners import Combiner, PassThroughCombiner
from diskmr.common.intermediate import IntermediateStore, KeyBucket
from diskmr.config import ControlOptions
from diskmr.coordinator.partitioner import make_block_indices
from diskmr.worker.task_context import TaskContext

logger = logging.getLogger(__name__)


class ReduceExecutor:
    """Executes a single reduce task"""

    def __init__(self, task_id: str, buckets: Sequence[KeyBucket], combiner: Optional[Combiner],
                 reduce_dir: str, counters_dir: str, control: ControlOptions,
                 setup_fn=None, params: Optional[Dict[str, Any]] = None):
        """
        Initialize the reduce executor

        Args:
            task_id: Unique ID for this reduce task
            buckets: Complete map-side key buckets assigned to this task
            combiner: Reduction protocol; pass-through when None
            reduce_dir: Reduce scratch tree of the job workspace
            counters_dir: Counters tree of the job workspace
            control: Job control options (reduce buffer size)
            setup_fn: Optional routine run once before the first key
            params: User parameters bound into the context
        """
        self.task_id = task_id
        self.buckets = list(buckets)
        self.combiner = combiner if combiner is not None else PassThroughCombiner()
        self.store = IntermediateStore(reduce_dir)
        self.counters_dir = counters_dir
        self.control = control
        self.setup_fn = setup_fn
        self.params = params

    def execute(self) -> dict:
        """
        Execute the reduce task

        Returns:
            Dictionary with 'task_id', 'keys' and 'execution_time_ms' fields
        """
        start_time = time.time()

        try:
            ctx = TaskContext(self.task_id, "reduce", self.store, self.counters_dir,
                              write_kv_separately=False, params=self.params)
            if self.setup_fn is not None:
                self.setup_fn(ctx)

            logger.info(f"reducer {self.task_id} ; started with {len(self.buckets)} keys")
            for bucket in self.buckets:
                self._reduce_key(ctx, bucket)
        except Exception as e:
            logger.error(f"Reduce task failed - Task: {self.task_id}. Error: {e}")
            raise

        execution_time = int((time.time() - start_time) * 1000)
        rss = psutil.Process().memory_info().rss
        logger.info(f"reducer {self.task_id} ; ended after {execution_time}ms, rss {rss} bytes")
        return {'task_id': self.task_id, 'keys': len(self.buckets), 'execution_time_ms': execution_time}

    def _reduce_key(self, ctx: TaskContext, bucket: KeyBucket):
        ctx.reset_state()
        ctx.key = bucket.load_key()

        # sequential sub-blocks: this task already occupies a pool slot
        sub_blocks = make_block_indices(bucket.sizes, self.control.reduce_block_bytes, 1)
        self.combiner.pre(ctx)
        logger.debug(f"reducer {self.task_id} ; {len(sub_blocks)} reduce blocks")

        for indices in sub_blocks:
            ctx.values = bucket.load_values(indices)
            self.combiner.reduce(ctx, ctx.values)
        self.combiner.post(ctx)

        ctx.counter("reduce", "kvProcessed", 1)
        ctx.flush()


def run_reduce_task(task, job) -> dict:
    """Pool entry point: run one ReduceTask under a JobDefinition."""
    executor = ReduceExecutor(task.task_id, task.buckets, job.combiner, job.reduce_dir,
                              job.counters_dir, job.control, setup_fn=job.setup_fn, params=job.params)
    return executor.execute()
