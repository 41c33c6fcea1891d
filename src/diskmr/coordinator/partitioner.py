"""
Block partitioning by data volume.

Splits a sequence of item sizes into ordered groups whose cumulative sizes are
roughly equal. Used to assign input files to map tasks, key buckets to reduce
tasks, and to cut a task's own input into buffer-sized sub-blocks.
"""

import math
from fractions import Fraction
from typing import List, Sequence

import numpy as np


def block_count(sizes: Sequence[float], size_per_block: float, min_blocks: int = 1) -> int:
    """Number of groups make_block_indices() will aim for."""
    if not sizes:
        return 0
    n = max(math.ceil(sum(sizes) / size_per_block), min_blocks)
    return min(len(sizes), n)


def make_block_indices(sizes: Sequence[float], size_per_block: float,
                       min_blocks: int = 1) -> List[List[int]]:
    """
    Partition item indices into groups of roughly `size_per_block` bytes

    Args:
        sizes: Size in bytes of each item, in order
        size_per_block: Target cumulative size of a group
        min_blocks: Minimum number of groups (desired parallelism)

    Returns:
        List of index lists covering range(len(sizes)) exactly once, in order
    """
    if size_per_block <= 0:
        raise ValueError(f"size_per_block must be positive, got {size_per_block}")

    n = block_count(sizes, size_per_block, min_blocks)
    if n == 0:
        return []
    if n == 1:
        return [list(range(len(sizes)))]

    # Cut the cumulative size curve at evenly spaced quantiles; each item falls
    # in the interval (q[k-1], q[k]] holding its cumulative size, the first
    # interval being closed on the left. Breaks are exact rationals so an item
    # sitting on a break is never pushed into a neighbouring group.
    exact = [Fraction(s.item() if isinstance(s, np.generic) else s) for s in sizes]
    cs = np.cumsum(np.array(exact, dtype=object))
    breaks = np.array([_quantile(cs, k, n) for k in range(1, n + 1)], dtype=object)
    labels = np.searchsorted(breaks, cs, side="left")

    groups = []
    for label in range(n):
        members = np.flatnonzero(labels == label)
        if members.size:
            groups.append(members.tolist())
    return groups


def _quantile(cs, k: int, n: int) -> Fraction:
    """k/n-th quantile of cs with linear interpolation between order statistics."""
    j, r = divmod((len(cs) - 1) * k, n)
    if r == 0:
        return cs[j]
    return cs[j] + Fraction(r, n) * (cs[j + 1] - cs[j])
