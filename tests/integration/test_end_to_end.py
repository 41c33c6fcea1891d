"""
End-to-end integration tests
Run complete jobs through the workspace, the worker pool and the output sinks
"""

import os
from collections import Counter
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd
import pytest

from diskmr import (
    Combiner, LocalDiskSink, MeanCoefCombiner, MemorySink, NothingToReduceError,
    SinkValidationError, mr_exec, recombine,
)
from diskmr.config import ControlOptions

SPECIES = ["setosa", "versicolor", "virginica"]


def by_species(ctx):
    for row in ctx.values:
        ctx.collect(row["Species"], row)


def word_map(ctx):
    for line in ctx.values:
        for word in line.lower().replace('.', '').split():
            ctx.collect(word, 1)


def word_sum():
    return Combiner.from_functions(
        pre=lambda ctx: ctx.state.update(count=0),
        reduce=lambda ctx, values: ctx.state.update(count=ctx.state["count"] + sum(values)),
        post=lambda ctx: ctx.collect(ctx.key, ctx.state["count"]),
    )


class FitLinearModel(Combiner):
    """Least-squares fit of Sepal.Length on Sepal.Width for each key"""

    def pre(self, ctx):
        ctx.state["rows"] = []

    def reduce(self, ctx, values):
        ctx.state["rows"].extend(values)

    def post(self, ctx):
        frame = pd.DataFrame(ctx.state["rows"])
        coef = fit(frame)
        ctx.collect(ctx.key, {"coef": coef, "n": len(frame), "names": ["intercept", "Sepal.Width"]})


def fit(frame):
    X = np.column_stack([np.ones(len(frame)), frame["Sepal.Width"].to_numpy()])
    coef, *_ = np.linalg.lstsq(X, frame["Sepal.Length"].to_numpy(), rcond=None)
    return coef


@pytest.mark.integration
class TestMapReduceJobs:
    """Tests for complete jobs from input partitions to materialized output"""

    def test_rbind_by_species(self, iris_partitions, control):
        result = mr_exec(iris_partitions, by_species, reduce="rbind", output=MemorySink(), control=control)

        records = dict(result.output.records())
        assert sorted(records) == SPECIES
        for species, frame in records.items():
            assert len(frame) == 50
            assert set(frame["Species"]) == {species}
        assert result.counters["map"]["kvProcessed"] == 150
        assert result.counters["reduce"]["kvProcessed"] == 3

    def test_no_reduce_passes_every_pair_through(self, iris_partitions, control):
        def lengths(ctx):
            for row in ctx.values:
                ctx.collect(row["Species"], row["Sepal.Length"])

        result = mr_exec(iris_partitions, lengths, output=MemorySink(), control=control)

        records = result.output.records()
        assert len(records) == 150
        assert Counter(result.output.keys()) == {s: 50 for s in SPECIES}

    def test_wordcount_to_directory(self, text_partition, sample_text, control, temp_dir):
        out = os.path.join(temp_dir, "out")
        result = mr_exec(text_partition, word_map, reduce=word_sum(), output=out, control=control)

        expected = Counter(sample_text.lower().replace('.', '').split())
        assert isinstance(result.output, LocalDiskSink)
        assert dict(result.output.records()) == dict(expected)

    def test_thread_pool_matches_sequential(self, text_partition, control, temp_dir):
        sequential = mr_exec(text_partition, word_map, reduce=word_sum(), output=MemorySink(), control=control)

        with ThreadPoolExecutor(max_workers=4) as pool:
            parallel_control = ControlOptions(worker_pool=pool, map_block_bytes=1, reduce_block_bytes=1,
                                              map_spill_threshold_bytes=1,
                                              temp_workspace_root=control.temp_workspace_root)
            parallel = mr_exec(text_partition, word_map, reduce=word_sum(), output=MemorySink(),
                               control=parallel_control)

        assert sorted(parallel.output.records()) == sorted(sequential.output.records())
        assert parallel.counters["map"]["kvProcessed"] == 5

    def test_user_counters_sum_exactly(self, iris_partitions, control):
        def count_species(ctx):
            for row in ctx.values:
                ctx.counter("species", row["Species"])
                ctx.collect(row["Species"], 1)

        with ThreadPoolExecutor(max_workers=3) as pool:
            result = mr_exec(iris_partitions, count_species, reduce=word_sum(), output=MemorySink(),
                             control=ControlOptions(worker_pool=pool,
                                                    temp_workspace_root=control.temp_workspace_root))

        assert result.counters["species"] == {s: 50 for s in SPECIES}

    def test_named_partitions_expose_source(self, iris_partitions, control):
        def source(ctx):
            ctx.collect(ctx.data_source_name, len(ctx.values))

        data = {"first": iris_partitions[0], "second": iris_partitions[1]}
        result = mr_exec(data, source, reduce=word_sum(), output=MemorySink(), control=control)
        assert dict(result.output.records()) == {"first": 50, "second": 50}

    def test_params_reach_map(self, text_partition, control):
        def filtered(ctx):
            for line in ctx.values:
                for word in line.lower().replace('.', '').split():
                    if word not in ctx.params["stopwords"]:
                        ctx.collect(word, 1)

        result = mr_exec(text_partition, filtered, reduce=word_sum(), output=MemorySink(),
                         control=control, params={"stopwords": {"the", "was"}})
        keys = result.output.keys()
        assert "the" not in keys and "was" not in keys
        assert "fox" in keys


@pytest.mark.integration
class TestWorkspaceLifecycle:
    """Tests for the job directory across success and failure"""

    def test_success_leaves_marker_counters_and_log(self, text_partition, control):
        result = mr_exec(text_partition, word_map, reduce=word_sum(), output=MemorySink(), control=control)

        assert result.job_number == 1
        assert sorted(os.listdir(result.job_dir)) == ["SUCCESS", "counters", "log"]
        with open(os.path.join(result.job_dir, "log", "job.log")) as f:
            assert "mapreduce_local_disk" in f.read()

    def test_jobs_get_increasing_numbers(self, text_partition, control):
        first = mr_exec(text_partition, word_map, output=MemorySink(), control=control)
        second = mr_exec(text_partition, word_map, output=MemorySink(), control=control)
        assert (first.job_number, second.job_number) == (1, 2)

    def test_nothing_to_reduce_keeps_workspace(self, text_partition, control):
        with pytest.raises(NothingToReduceError, match="nothing to reduce"):
            mr_exec(text_partition, lambda ctx: None, control=control)

        job_dir = os.path.join(control.temp_workspace_root, "job_1")
        assert sorted(os.listdir(job_dir)) == ["counters", "log", "map", "reduce"]

    def test_map_failure_keeps_workspace(self, text_partition, control):
        def broken(ctx):
            raise ValueError("cannot parse line")

        with pytest.raises(ValueError):
            mr_exec(text_partition, broken, control=control)
        assert not os.path.exists(os.path.join(control.temp_workspace_root, "job_1", "SUCCESS"))


@pytest.mark.integration
class TestRecombine:
    """Tests for applying combiners directly to partition records"""

    def test_mean_coef_matches_manual_average(self, iris_partitions, iris_rows, control, temp_dir):
        fits_dir = os.path.join(temp_dir, "fits")

        def by_source(ctx):
            for row in ctx.values:
                ctx.collect(ctx.data_source_name, row)

        fits = mr_exec(iris_partitions, by_source, reduce=FitLinearModel(), output=fits_dir, control=control)
        coef = recombine(fits.output.as_partition(), MeanCoefCombiner(), control=control)

        manual = np.mean([fit(pd.DataFrame(iris_rows[p * 50:(p + 1) * 50])) for p in range(3)], axis=0)
        assert list(coef.index) == ["intercept", "Sepal.Width"]
        assert np.allclose(coef.to_numpy(), manual)

    def test_rbind_groups_everything(self, iris_partitions, control):
        frame = recombine(iris_partitions, "rbind", control=control)
        assert isinstance(frame, pd.DataFrame)
        assert len(frame) == 150

    def test_collect_returns_records(self, text_partition, control):
        records = recombine(text_partition, control=control)
        assert sorted(k for k, _ in records) == [0, 1, 2, 3, 4]

    def test_ddf_writes_to_disk(self, iris_partitions, control, temp_dir):
        out = os.path.join(temp_dir, "ddf")
        sink = recombine(iris_partitions, "ddf", output=out, control=control)
        assert isinstance(sink, LocalDiskSink)
        assert len(sink.records()) == 150

    def test_ddo_keeps_every_record_on_disk(self, iris_partitions, control, temp_dir):
        out = os.path.join(temp_dir, "ddo")
        sink = recombine(iris_partitions, "ddo", output=out, control=control)

        assert isinstance(sink, LocalDiskSink)
        records = sink.records()
        assert sorted(k for k, _ in records) == list(range(150))
        assert all(isinstance(v, dict) for _, v in records)

    def test_memory_only_combiner_rejects_disk_sink(self, iris_partitions, control, temp_dir):
        with pytest.raises(SinkValidationError):
            recombine(iris_partitions, "rbind", output=os.path.join(temp_dir, "out"), control=control)
        assert not os.path.exists(os.path.join(control.temp_workspace_root, "job_1"))
