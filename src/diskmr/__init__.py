"""
diskmr: a disk-backed MapReduce engine.

Map output is spilled to a content-addressed directory tree, reduced per key
through a pre/reduce/post combiner protocol and drained into an output sink.
Local (or shared-mount) disk is the only coordination substrate.
"""

from diskmr.combiners import (
    CollectCombiner,
    Combiner,
    DdfCombiner,
    DdoCombiner,
    FunctionCombiner,
    MeanCoefCombiner,
    MeanCoefStdErrCombiner,
    MeanCombiner,
    PassThroughCombiner,
    RbindCombiner,
)
from diskmr.common.data import InputPartition
from diskmr.config import ControlOptions
from diskmr.coordinator.job_manager import JobResult, mr_exec
from diskmr.errors import (
    JobFileError,
    MapReduceError,
    NothingToReduceError,
    SinkValidationError,
    WorkspaceError,
)
from diskmr.recombine import recombine
from diskmr.sinks import LocalDiskSink, MemorySink

__version__ = "0.1.0"
