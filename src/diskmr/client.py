"""
Command line client for the local-disk MapReduce engine.

    diskmr import-text corpus.txt data/corpus
    diskmr run --input data/corpus --job-file examples/wordcount.py --output out/ --slots 4
    diskmr results out/
    diskmr counters /tmp/job_3
"""

import argparse
import json
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor

from diskmr.common.counters import read_counters
from diskmr.common.data import InputPartition
from diskmr.config import ControlOptions
from diskmr.coordinator.job_manager import mr_exec
from diskmr.errors import MapReduceError
from diskmr.sinks import LocalDiskSink
from diskmr.worker.function_loader import FunctionLoader

logger = logging.getLogger(__name__)


def import_text(args):
    """Turn a text file into an input partition of (line_number, line) records."""
    with open(args.text_file, 'r', encoding='utf-8', errors='ignore') as f:
        records = [(i, line.rstrip('\n')) for i, line in enumerate(f)]
    partition = InputPartition.write(args.dest, records, records_per_file=args.lines_per_file)
    print(f"Wrote {len(records)} records in {len(partition.files)} files to {args.dest}")


def run_job(args):
    loader = FunctionLoader(args.job_file)
    partitions = [InputPartition.from_directory(path) for path in args.input]

    overrides = {}
    for name in ("map_block_bytes", "reduce_block_bytes", "map_spill_threshold_bytes"):
        if getattr(args, name) is not None:
            overrides[name] = getattr(args, name)
    if args.temp_dir:
        overrides["temp_workspace_root"] = args.temp_dir
    if args.slots:
        overrides["num_slots"] = args.slots
    control = ControlOptions.from_env(**overrides)

    pool = ThreadPoolExecutor(max_workers=control.slots) if control.slots > 1 else None
    try:
        control.worker_pool = pool
        result = mr_exec(partitions, loader.get_map_function(), reduce=loader.get_combiner(),
                         setup=loader.get_setup_function(), output=args.output,
                         control=control, params=loader.get_params())
    finally:
        if pool is not None:
            pool.shutdown()

    print(f"Job {result.job_number} completed: {result.job_dir}")
    print(f"Output: {result.output.path}")
    print(json.dumps(result.counters, indent=2, sort_keys=True))


def show_results(args):
    if not os.path.isdir(args.output):
        print(f"Output directory not found: {args.output}")
        sys.exit(1)
    sink = LocalDiskSink(args.output)
    for key, value in sink.records()[:args.limit]:
        print(f"{key}\t{value}")


def show_counters(args):
    counters_dir = os.path.join(args.job_dir, "counters")
    if not os.path.isdir(counters_dir):
        print(f"No counters found in {args.job_dir}")
        sys.exit(1)
    print(json.dumps(read_counters(counters_dir), indent=2, sort_keys=True))


def main(argv=None):
    parser = argparse.ArgumentParser(description="Local-disk MapReduce client")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log debug output")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    import_parser = subparsers.add_parser("import-text", help="Convert a text file to an input partition")
    import_parser.add_argument("text_file", help="Text file to read")
    import_parser.add_argument("dest", help="Partition directory to create")
    import_parser.add_argument("--lines-per-file", type=int, default=100,
                               help="Records per record file")

    run_parser = subparsers.add_parser("run", help="Run a job")
    run_parser.add_argument("--input", action="append", required=True,
                            help="Input partition directory (repeatable)")
    run_parser.add_argument("--job-file", required=True, help="Python file with map_fn and reduction")
    run_parser.add_argument("--output", required=True, help="Output directory")
    run_parser.add_argument("--slots", type=int, default=None, help="Number of parallel task slots")
    run_parser.add_argument("--map-block-bytes", type=int, default=None)
    run_parser.add_argument("--reduce-block-bytes", type=int, default=None)
    run_parser.add_argument("--map-spill-threshold-bytes", type=int, default=None)
    run_parser.add_argument("--temp-dir", default=None, help="Root for job workspaces")

    results_parser = subparsers.add_parser("results", help="Print records of an output directory")
    results_parser.add_argument("output", help="Output directory of a finished job")
    results_parser.add_argument("--limit", type=int, default=50, help="Maximum records to print")

    counters_parser = subparsers.add_parser("counters", help="Print counters of a finished job")
    counters_parser.add_argument("job_dir", help="job_<N> workspace directory")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        if args.command == "import-text":
            import_text(args)
        elif args.command == "run":
            run_job(args)
        elif args.command == "results":
            show_results(args)
        elif args.command == "counters":
            show_counters(args)
        else:
            parser.print_help()
            sys.exit(1)
    except MapReduceError as e:
        logger.error(str(e))
        sys.exit(2)


if __name__ == '__main__':
    main()
