"""
Recombination: run a combiner directly over the records of input partitions.

The map side emits every record's value, either under its own key or, for
grouping combiners, under one synthetic key so a single reduce sees them all.
The output sink is checked against the combiner's accepted kinds and the
combiner's finalize step is applied to the materialized result.
"""

import logging
from typing import Any, Dict, Optional

from diskmr.combiners import LOCAL_DISK, MEMORY, Combiner, resolve_combiner
from diskmr.coordinator.job_manager import mr_exec
from diskmr.errors import SinkValidationError
from diskmr.sinks import MemorySink, Sink

logger = logging.getLogger(__name__)

GROUP_KEY = 1


class RecombineMap:
    """Map routine emitting each value through the combiner's map hook"""

    def __init__(self, combiner: Combiner):
        self.combiner = combiner

    def __call__(self, ctx):
        for key, value in zip(ctx.keys, ctx.values):
            value = self.combiner.map_hook(key, value)
            if value is None:
                continue
            ctx.collect(GROUP_KEY if self.combiner.group else key, value)


def _sink_kind(output) -> str:
    if isinstance(output, Sink):
        return output.kind
    return LOCAL_DISK


def recombine(data, combine: Any = "collect", output=None, control=None,
              params: Optional[Dict[str, Any]] = None):
    """
    Apply a combiner to every value in `data`

    Args:
        data: Input partition(s) accepted by mr_exec()
        combine: Combiner instance or built-in name
        output: Sink or path; defaults to a MemorySink for memory-only combiners
        control: Job control options
        params: User parameters

    Returns:
        The combiner's finalized result
    """
    combiner = resolve_combiner(combine)
    if output is None and MEMORY in combiner.accepted_sinks:
        output = MemorySink()

    kind = _sink_kind(output)
    if kind not in combiner.accepted_sinks:
        raise SinkValidationError(f"{type(combiner).__name__} cannot write to a {kind} sink; "
                                  f"accepted: {sorted(combiner.accepted_sinks)}")

    result = mr_exec(data, RecombineMap(combiner), reduce=combiner, output=output,
                     control=control, params=params)
    logger.info(f"recombine ; job {result.job_number} done, counters {result.counters}")
    return combiner.finalize(result.output)
