"""
Exceptions raised by the MapReduce engine.
"""


class MapReduceError(RuntimeError):
    """Base class for engine errors"""


class WorkspaceError(MapReduceError):
    """Job directory could not be allocated or torn down"""


class NothingToReduceError(MapReduceError):
    """The map phase produced no output buckets"""

    def __init__(self, message: str = "There was no map output - nothing to reduce"):
        super().__init__(message)


class SinkValidationError(MapReduceError):
    """Output sink kind is not accepted by the combiner"""


class JobFileError(MapReduceError):
    """User job file is missing or does not define the required routines"""
