"""
Output materialization.

After the reduce barrier, drains every bucket of the reduce scratch tree into
the destination sink. No reduction happens here.
"""

import logging

from diskmr.common.intermediate import IntermediateStore
from diskmr.sinks import Sink, make_sink

logger = logging.getLogger(__name__)


def materialize_output(reduce_dir: str, output, job_number: int) -> Sink:
    """
    Forward all reduced records to the sink

    Args:
        reduce_dir: Reduce scratch tree of the job workspace
        output: Sink handle, output path, or None
        job_number: Ordinal of the job

    Returns:
        The sink the records were appended to
    """
    buckets = IntermediateStore(reduce_dir).buckets()
    sink = make_sink(output, n_keys=len(buckets), job_number=job_number)

    records = 0
    for bucket in buckets:
        bucket_records = bucket.load_values()
        sink.append(bucket_records)
        records += len(bucket_records)

    logger.info(f"Materialized {records} records for {len(buckets)} keys into {sink.kind} sink")
    return sink
