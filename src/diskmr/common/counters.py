"""
Distributed counters backed by file renames.

A counter (group, field) is the directory counters/<group>/<field>/. Each task
owns counters/<group>/<field>/<task_id>/, which holds exactly one empty file
whose name is the task's running total. Incrementing renames that file from
its current value to the new one, so no locking is needed and a task that never
incremented shows up as a stale "0".
"""

import logging
import os
from typing import Dict

logger = logging.getLogger(__name__)


def _current_value(task_path: str) -> int:
    values = [int(name) for name in os.listdir(task_path) if name.isdigit()]
    if len(values) != 1:
        raise RuntimeError(f"Counter directory {task_path} holds {len(values)} values")
    return values[0]


def increment_counter(counters_dir: str, group: str, field: str, task_id: str, delta: int = 1) -> int:
    """
    Add delta to the task's (group, field) counter

    Args:
        counters_dir: Root of the job's counters tree
        group: Counter group, e.g. "map"
        field: Counter field, e.g. "kvProcessed"
        task_id: Task owning the counter file
        delta: Non-negative increment

    Returns:
        The task's new total for the counter
    """
    delta = int(delta)
    if delta < 0:
        raise ValueError(f"Counter increments must be non-negative, got {delta}")

    task_path = os.path.join(counters_dir, str(group), str(field), task_id)
    if not os.path.isdir(task_path):
        os.makedirs(task_path)
        open(os.path.join(task_path, "0"), "w").close()

    current = _current_value(task_path)
    new_value = current + delta
    if new_value != current:
        os.rename(os.path.join(task_path, str(current)), os.path.join(task_path, str(new_value)))
    return new_value


def read_counters(counters_dir: str) -> Dict[str, Dict[str, int]]:
    """Sum every task's total for each (group, field)."""
    counters: Dict[str, Dict[str, int]] = {}
    if not os.path.isdir(counters_dir):
        return counters

    for group in sorted(os.listdir(counters_dir)):
        group_path = os.path.join(counters_dir, group)
        fields = {}
        for field in sorted(os.listdir(group_path)):
            field_path = os.path.join(group_path, field)
            total = 0
            for task_id in os.listdir(field_path):
                total += _current_value(os.path.join(field_path, task_id))
            fields[field] = total
        counters[group] = fields

    logger.debug(f"Read counters from {counters_dir}: {counters}")
    return counters
