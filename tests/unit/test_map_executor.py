"""
Unit tests for MapExecutor
"""

import os
from unittest.mock import Mock

import pytest

from diskmr.common.counters import read_counters
from diskmr.common.intermediate import IntermediateStore, key_hash
from diskmr.config import ControlOptions
from diskmr.worker.map_executor import MapExecutor


def word_map(ctx):
    for line in ctx.values:
        for word in line.lower().replace('.', '').split():
            ctx.collect(word, 1)


@pytest.fixture
def job_dirs(temp_dir):
    map_dir = os.path.join(temp_dir, "job", "map")
    counters_dir = os.path.join(temp_dir, "job", "counters")
    os.makedirs(map_dir)
    os.makedirs(counters_dir)
    return map_dir, counters_dir


def make_executor(partition, job_dirs, map_fn=word_map, task_id="map-0001", **kwargs):
    map_dir, counters_dir = job_dirs
    control = kwargs.pop("control", ControlOptions())
    return MapExecutor(task_id, [partition.block()], map_fn, map_dir, counters_dir, control, **kwargs)


class TestMapExecution:
    """Tests for running the map routine over blocks"""

    def test_emits_into_buckets(self, text_partition, job_dirs):
        result = make_executor(text_partition, job_dirs).execute()

        assert result['task_id'] == "map-0001"
        assert result['records'] == 5
        store = IntermediateStore(job_dirs[0])
        the = store.bucket(key_hash("the"))
        assert the.load_key() == "the"
        assert sum(the.load_values()) == 4

    def test_counts_processed_records(self, text_partition, job_dirs):
        make_executor(text_partition, job_dirs).execute()
        assert read_counters(job_dirs[1]) == {"map": {"kvProcessed": 5}}

    def test_keys_and_values_are_parallel(self, text_partition, job_dirs):
        seen = []

        def record_map(ctx):
            seen.extend(zip(ctx.keys, ctx.values))

        make_executor(text_partition, job_dirs, map_fn=record_map).execute()
        assert [k for k, _ in seen] == [0, 1, 2, 3, 4]
        assert seen[1][1] == "The dog was really lazy."

    def test_small_map_blocks_call_map_per_sub_block(self, text_partition, job_dirs):
        calls = []
        control = ControlOptions(map_block_bytes=1)
        make_executor(text_partition, job_dirs, map_fn=lambda ctx: calls.append(len(ctx.values)),
                      control=control).execute()

        # three record files: two lines, two lines, one line
        assert calls == [2, 2, 1]

    def test_single_final_flush_when_buffer_stays_small(self, text_partition, job_dirs):
        make_executor(text_partition, job_dirs).execute()
        bucket = IntermediateStore(job_dirs[0]).bucket(key_hash("the"))
        assert len(bucket.chunks) == 1

    def test_spill_threshold_forces_intermediate_flushes(self, text_partition, job_dirs):
        control = ControlOptions(map_block_bytes=1, map_spill_threshold_bytes=1)
        make_executor(text_partition, job_dirs, control=control).execute()

        bucket = IntermediateStore(job_dirs[0]).bucket(key_hash("the"))
        # "the" appears in the first two files
        assert len(bucket.chunks) == 2
        assert sum(bucket.load_values()) == 4

    def test_setup_runs_once(self, text_partition, job_dirs):
        setup = Mock()
        control = ControlOptions(map_block_bytes=1)
        make_executor(text_partition, job_dirs, setup_fn=setup, control=control).execute()
        setup.assert_called_once()

    def test_params_reset_before_each_invocation(self, text_partition, job_dirs):
        observed = []

        def mutating_map(ctx):
            observed.append(list(ctx.params["seen"]))
            ctx.params["seen"].append(len(ctx.values))

        control = ControlOptions(map_block_bytes=1)
        make_executor(text_partition, job_dirs, map_fn=mutating_map, control=control,
                      params={"seen": []}).execute()
        assert observed == [[], [], []]

    def test_data_source_name_exposed(self, text_partition, job_dirs):
        names = []
        make_executor(text_partition, job_dirs, map_fn=lambda ctx: names.append(ctx.data_source_name)).execute()
        assert names == ["text"]

    def test_map_errors_propagate(self, text_partition, job_dirs):
        def broken_map(ctx):
            raise KeyError("missing column")

        with pytest.raises(KeyError):
            make_executor(text_partition, job_dirs, map_fn=broken_map).execute()

    def test_empty_emission_leaves_no_buckets(self, text_partition, job_dirs):
        make_executor(text_partition, job_dirs, map_fn=lambda ctx: None).execute()
        assert IntermediateStore(job_dirs[0]).buckets() == []
