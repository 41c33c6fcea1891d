"""
Job Manager for the local-disk MapReduce engine
Handles workspace allocation, task generation, phase barriers and result collection
"""

import logging
import threading
import time
from concurrent.futures import wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from diskmr.combiners import Combiner, resolve_combiner
from diskmr.common.counters import read_counters
from diskmr.common.data import InputBlock, InputPartition
from diskmr.common.intermediate import IntermediateStore, KeyBucket
from diskmr.config import ControlOptions
from diskmr.coordinator.materializer import materialize_output
from diskmr.coordinator.partitioner import make_block_indices
from diskmr.coordinator.workspace import JobWorkspace
from diskmr.errors import NothingToReduceError
from diskmr.sinks import Sink
from diskmr.worker.map_executor import run_map_task
from diskmr.worker.reduce_executor import run_reduce_task

logger = logging.getLogger(__name__)


class JobStatus(Enum):
    """Status of a MapReduce job"""
    PENDING = "pending"
    MAP_PHASE = "map_phase"
    REDUCE_PHASE = "reduce_phase"
    OUTPUT_PHASE = "output_phase"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(Enum):
    """Status of individual map or reduce tasks"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class MapTask:
    """Represents a single map task"""
    task_id: str
    blocks: List[InputBlock] = field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING

    @property
    def total_size(self) -> int:
        return sum(b.total_size for b in self.blocks)


@dataclass
class ReduceTask:
    """Represents a single reduce task"""
    task_id: str
    buckets: List[KeyBucket] = field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING

    @property
    def total_size(self) -> int:
        return sum(b.total_size for b in self.buckets)


@dataclass
class JobDefinition:
    """Everything a task needs to run, picklable for process pools"""
    map_fn: Callable
    combiner: Combiner
    map_dir: str
    reduce_dir: str
    counters_dir: str
    control: ControlOptions
    setup_fn: Optional[Callable] = None
    params: Optional[Dict[str, Any]] = None


@dataclass
class JobResult:
    """Materialized output plus aggregated counters"""
    output: Sink
    counters: Dict[str, Dict[str, int]]
    job_number: int
    job_dir: str


def _as_partitions(data) -> List[InputPartition]:
    if isinstance(data, InputPartition):
        return [data]
    if isinstance(data, Mapping):
        partitions = []
        for name, partition in data.items():
            if partition.name != name:
                partition = InputPartition(name, partition.location, partition.files, partition.sizes)
            partitions.append(partition)
        return partitions
    return list(data)


class JobManager:
    """Runs one MapReduce job from workspace allocation to teardown"""

    def __init__(self, workspace: JobWorkspace, definition: JobDefinition,
                 control: ControlOptions):
        self.workspace = workspace
        self.definition = definition
        self.control = control
        self.status = JobStatus.PENDING
        self.map_tasks: List[MapTask] = []
        self.reduce_tasks: List[ReduceTask] = []
        self.start_time = time.time()
        self.end_time = 0.0
        self.lock = threading.Lock()

    def generate_map_tasks(self, partitions: Sequence[InputPartition]) -> List[MapTask]:
        """Split each partition's files into ~equal-volume blocks, one per map task"""
        slots = self.control.slots
        blocks = []
        for partition in partitions:
            total = sum(partition.sizes)
            for indices in make_block_indices(partition.sizes, max(total / slots, 1), slots):
                blocks.append(partition.block(indices))

        self.map_tasks = [MapTask(task_id=f"map-{i:04d}", blocks=[block])
                          for i, block in enumerate(blocks, start=1)]
        logger.info(f"mapreduce_local_disk ; {len(self.map_tasks)} map tasks")
        return self.map_tasks

    def generate_reduce_tasks(self) -> List[ReduceTask]:
        """Group completed map buckets into reduce tasks balanced by on-disk size"""
        buckets = IntermediateStore(self.workspace.map_dir).buckets()
        if not buckets:
            raise NothingToReduceError()

        slots = self.control.slots
        sizes = [b.total_size for b in buckets]
        indices = make_block_indices(sizes, max(sum(sizes) / slots, 1), slots)

        self.reduce_tasks = [ReduceTask(task_id=f"reduce-{i:04d}", buckets=[buckets[j] for j in idx])
                             for i, idx in enumerate(indices, start=1)]
        logger.info(f"mapreduce_local_disk ; {len(buckets)} keys in {len(self.reduce_tasks)} reduce tasks")
        return self.reduce_tasks

    def _mark(self, task, status: TaskStatus):
        with self.lock:
            task.status = status

    def run_tasks(self, tasks: Sequence, runner: Callable) -> List[dict]:
        """
        Run every task and return only once all of them have finished

        Args:
            tasks: MapTask or ReduceTask list
            runner: Module-level entry point taking (task, definition)

        Returns:
            Per-task result dictionaries, in task order
        """
        pool = self.control.worker_pool
        if pool is None:
            results = []
            for task in tasks:
                self._mark(task, TaskStatus.RUNNING)
                try:
                    results.append(runner(task, self.definition))
                except Exception:
                    self._mark(task, TaskStatus.FAILED)
                    raise
                self._mark(task, TaskStatus.COMPLETED)
            return results

        futures = []
        for task in tasks:
            self._mark(task, TaskStatus.RUNNING)
            futures.append(pool.submit(runner, task, self.definition))

        # barrier: drain the whole phase before looking at any result
        wait(futures)

        results = []
        for task, future in zip(tasks, futures):
            error = future.exception()
            self._mark(task, TaskStatus.FAILED if error else TaskStatus.COMPLETED)
        for future in futures:
            results.append(future.result())
        return results

    def run(self, partitions: Sequence[InputPartition], output) -> JobResult:
        try:
            self.status = JobStatus.MAP_PHASE
            self.generate_map_tasks(partitions)
            logger.info("mapreduce_local_disk ; starting mappers")
            self.run_tasks(self.map_tasks, run_map_task)

            self.status = JobStatus.REDUCE_PHASE
            self.generate_reduce_tasks()
            logger.info("mapreduce_local_disk ; starting reducers")
            self.run_tasks(self.reduce_tasks, run_reduce_task)

            self.status = JobStatus.OUTPUT_PHASE
            sink = materialize_output(self.workspace.reduce_dir, output, self.workspace.job_number)
            counters = read_counters(self.workspace.counters_dir)
            self.workspace.finish()
        except Exception as e:
            self.status = JobStatus.FAILED
            logger.error(f"Job {self.workspace.job_number} failed: {e}; workspace left at {self.workspace.job_dir}")
            raise

        self.status = JobStatus.COMPLETED
        self.end_time = time.time()
        return JobResult(output=sink, counters=counters, job_number=self.workspace.job_number,
                         job_dir=self.workspace.job_dir)

    def get_job_status(self) -> Dict:
        """Get current job status with progress"""
        with self.lock:
            map_done = sum(1 for t in self.map_tasks if t.status == TaskStatus.COMPLETED)
            reduce_done = sum(1 for t in self.reduce_tasks if t.status == TaskStatus.COMPLETED)
            return {
                'status': self.status.value,
                'map_completed': map_done,
                'map_total': len(self.map_tasks),
                'reduce_completed': reduce_done,
                'reduce_total': len(self.reduce_tasks),
            }


def mr_exec(data: Union[InputPartition, Sequence[InputPartition], Mapping[str, InputPartition]],
            map_fn: Callable, reduce=None, setup: Optional[Callable] = None, output=None,
            control=None, params: Optional[Dict[str, Any]] = None) -> JobResult:
    """
    Run a MapReduce job over local-disk partitions

    Args:
        data: Input partition(s), as one partition, a list, or a name -> partition mapping
        map_fn: Map routine called with a TaskContext exposing keys/values and collect()
        reduce: Combiner, built-in combiner name, (pre, reduce, post) tuple, or None
            for pass-through of every emitted value
        setup: Optional routine run once at the start of every task
        output: Sink, output directory path, or None for a temp directory
        control: ControlOptions, a dict of control options, or None
        params: User parameters exposed to routines as ctx.params

    Returns:
        JobResult with the materialized sink and counters[group][field]

    Raises:
        WorkspaceError: The job directory could not be allocated
        NothingToReduceError: The map phase emitted nothing
    """
    control = ControlOptions.coerce(control)
    partitions = _as_partitions(data)
    combiner = resolve_combiner(reduce)

    workspace = JobWorkspace.create(control.temp_workspace_root)
    workspace.attach_log()
    try:
        definition = JobDefinition(map_fn=map_fn, combiner=combiner, map_dir=workspace.map_dir,
                                   reduce_dir=workspace.reduce_dir, counters_dir=workspace.counters_dir,
                                   control=control.for_tasks(), setup_fn=setup, params=params)
        manager = JobManager(workspace, definition, control)
        return manager.run(partitions, output)
    finally:
        workspace.detach_log()
