"""
Map Task Executor
Runs the user's map routine over a task's input blocks, buffering emissions
in the task context and spilling them into the map scratch tree
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Sequence

import psutil

from diskmr.common.data import InputBlock
from diskmr.common.intermediate import IntermediateStore
from diskmr.config import ControlOptions
from diskmr.coordinator.partitioner import make_block_indices
from diskmr.worker.task_context import TaskContext

logger = logging.getLogger(__name__)


class MapExecutor:
    """Executes a single map task"""

    def __init__(self, task_id: str, blocks: Sequence[InputBlock], map_fn: Callable[[TaskContext], Any],
                 map_dir: str, counters_dir: str, control: ControlOptions,
                 setup_fn: Optional[Callable[[TaskContext], Any]] = None,
                 params: Optional[Dict[str, Any]] = None):
        """
        Initialize the map executor

        Args:
            task_id: Unique ID for this map task
            blocks: Input blocks assigned to this task
            map_fn: User map routine, called with the task context
            map_dir: Map scratch tree of the job workspace
            counters_dir: Counters tree of the job workspace
            control: Job control options (buffer thresholds)
            setup_fn: Optional routine run once before the first block
            params: User parameters bound into the context
        """
        self.task_id = task_id
        self.blocks = list(blocks)
        self.map_fn = map_fn
        self.store = IntermediateStore(map_dir)
        self.counters_dir = counters_dir
        self.control = control
        self.setup_fn = setup_fn
        self.params = params

    def _new_context(self) -> TaskContext:
        return TaskContext(self.task_id, "map", self.store, self.counters_dir,
                           write_kv_separately=True, params=self.params)

    def execute(self) -> dict:
        """
        Execute the map task

        Returns:
            Dictionary with 'task_id', 'records' and 'execution_time_ms' fields
        """
        start_time = time.time()
        records = 0

        try:
            logger.info(f"mapper {self.task_id} ; started")
            ctx = self._new_context()
            if self.setup_fn is not None:
                self.setup_fn(ctx)

            for block in self.blocks:
                ctx.data_source_name = block.source_name
                records += self._map_block(ctx, block)

            logger.info(f"mapper {self.task_id} ; completed operation")
            ctx.flush()
        except Exception as e:
            logger.error(f"Map task failed - Task: {self.task_id}. Error: {e}")
            raise

        execution_time = int((time.time() - start_time) * 1000)
        rss = psutil.Process().memory_info().rss
        logger.info(f"mapper {self.task_id} ; {records} records in {execution_time}ms, rss {rss} bytes")
        return {'task_id': self.task_id, 'records': records, 'execution_time_ms': execution_time}

    def _map_block(self, ctx: TaskContext, block: InputBlock) -> int:
        sub_blocks = make_block_indices(block.sizes, self.control.map_block_bytes, 1)
        logger.info(f"mapper {self.task_id} ; {len(sub_blocks)} map blocks to apply mappers to")

        processed = 0
        for indices in sub_blocks:
            # fresh params for every invocation in case the last one changed them
            ctx.reset_params()

            records = block.load_records(indices)
            ctx.keys = [r[0] for r in records]
            ctx.values = [r[1] for r in records]
            self.map_fn(ctx)

            ctx.counter("map", "kvProcessed", len(ctx.values))
            processed += len(records)

            if ctx.buffer_size() > self.control.map_spill_threshold_bytes:
                logger.info(f"mapper {self.task_id} ; buffer reached...flushing")
                ctx.flush()
        return processed


def run_map_task(task, job) -> dict:
    """Pool entry point: run one MapTask under a JobDefinition."""
    executor = MapExecutor(task.task_id, task.blocks, job.map_fn, job.map_dir, job.counters_dir,
                           job.control, setup_fn=job.setup_fn, params=job.params)
    return executor.execute()
