"""
Job workspace management.

Every job runs inside its own job_<N> directory under a temp root, where N is
one greater than the largest ordinal already present. The workspace holds the
map and reduce scratch trees, the counters tree and the job log.
"""

import logging
import os
import re
import shutil
import tempfile
from typing import Optional

from diskmr.errors import WorkspaceError

logger = logging.getLogger(__name__)

JOB_DIR_PATTERN = re.compile(r"^job_(\d+)$")
SUCCESS_MARKER = "SUCCESS"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def next_job_number(temp_root: str) -> int:
    """Return one more than the highest job_<N> ordinal in temp_root."""
    numbers = []
    for name in os.listdir(temp_root):
        match = JOB_DIR_PATTERN.match(name)
        if match:
            numbers.append(int(match.group(1)))
    return max(numbers) + 1 if numbers else 1


class JobWorkspace:
    """Directory tree owned by a single job"""

    def __init__(self, job_dir: str, job_number: int):
        self.job_dir = job_dir
        self.job_number = job_number
        self.map_dir = os.path.join(job_dir, "map")
        self.reduce_dir = os.path.join(job_dir, "reduce")
        self.counters_dir = os.path.join(job_dir, "counters")
        self.log_dir = os.path.join(job_dir, "log")
        self._log_handler: Optional[logging.Handler] = None
        self._saved_level = logging.NOTSET

    @classmethod
    def create(cls, temp_root: Optional[str] = None) -> "JobWorkspace":
        """
        Allocate a fresh job directory

        Args:
            temp_root: Directory to allocate in (system temp directory if None)

        Returns:
            JobWorkspace with map, reduce, counters and log subdirectories

        Raises:
            WorkspaceError: If the root is unusable or any directory already exists
        """
        temp_root = temp_root or tempfile.gettempdir()
        logger.info(f"mapreduce_local_disk ; temp dir is {temp_root}")

        try:
            job_number = next_job_number(temp_root)
            workspace = cls(os.path.join(temp_root, f"job_{job_number}"), job_number)
            os.mkdir(workspace.job_dir)
            for path in (workspace.map_dir, workspace.reduce_dir,
                         workspace.counters_dir, workspace.log_dir):
                os.mkdir(path)
        except OSError as e:
            raise WorkspaceError(f"Could not create job workspace in {temp_root}: {e}") from e

        logger.info(f"mapreduce_local_disk ; log dir is {workspace.log_dir}")
        return workspace

    @property
    def log_file(self) -> str:
        return os.path.join(self.log_dir, "job.log")

    @property
    def succeeded(self) -> bool:
        return os.path.exists(os.path.join(self.job_dir, SUCCESS_MARKER))

    def attach_log(self, logger_name: str = "diskmr"):
        """Mirror engine log records into log/job.log while the job runs."""
        handler = logging.FileHandler(self.log_file)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(logging.INFO)
        engine_logger = logging.getLogger(logger_name)
        self._saved_level = engine_logger.level
        if engine_logger.getEffectiveLevel() > logging.INFO:
            engine_logger.setLevel(logging.INFO)
        engine_logger.addHandler(handler)
        self._log_handler = handler

    def detach_log(self, logger_name: str = "diskmr"):
        if self._log_handler is None:
            return
        engine_logger = logging.getLogger(logger_name)
        engine_logger.removeHandler(self._log_handler)
        engine_logger.setLevel(self._saved_level)
        self._log_handler.close()
        self._log_handler = None

    def finish(self):
        """Remove scratch trees, keep counters and log, write the completion marker."""
        try:
            shutil.rmtree(self.map_dir)
            shutil.rmtree(self.reduce_dir)
            open(os.path.join(self.job_dir, SUCCESS_MARKER), "w").close()
        except OSError as e:
            raise WorkspaceError(f"Could not finalize job workspace {self.job_dir}: {e}") from e
        logger.info(f"mapreduce_local_disk ; job {self.job_number} finished, workspace at {self.job_dir}")
