"""On-disk structures shared by coordinator and workers."""
