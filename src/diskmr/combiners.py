"""
Combiner protocol and built-in combiners.

A combiner reduces the grouped values of one key in three phases:

    pre(ctx)             initialize accumulator state in ctx.state
    reduce(ctx, values)  called once per value sub-block
    post(ctx)            finalize and emit with ctx.collect()

reduce() must be associative across sub-blocks: running it once over all
values or several times over consecutive slices of them has to produce the
same output. Combiners keep no state of their own; everything lives in the
task context, which is reset between keys.

Besides the three phases a combiner declares whether values are grouped under
a single synthetic key when used through recombine() (`group`), the sink kinds
it can write to (`accepted_sinks`), and a `finalize` step applied to the
materialized sink once the whole job is done.
"""

from typing import Any, Callable, FrozenSet, Optional

import numpy as np
import pandas as pd

MEMORY = "memory"
LOCAL_DISK = "local_disk"
ALL_SINKS = frozenset({MEMORY, LOCAL_DISK})


class Combiner:
    """Base combiner: no accumulation, no output"""

    group: bool = False
    accepted_sinks: FrozenSet[str] = ALL_SINKS

    def pre(self, ctx):
        pass

    def reduce(self, ctx, values):
        pass

    def post(self, ctx):
        pass

    def map_hook(self, key, value):
        """Transform a value before recombine() emits it; None drops it."""
        return value

    def finalize(self, output):
        return output

    @staticmethod
    def from_functions(pre: Optional[Callable] = None, reduce: Optional[Callable] = None,
                       post: Optional[Callable] = None, **kwargs) -> "FunctionCombiner":
        return FunctionCombiner(pre=pre, reduce=reduce, post=post, **kwargs)


class FunctionCombiner(Combiner):
    """Combiner built from plain functions sharing the task context"""

    def __init__(self, pre: Optional[Callable] = None, reduce: Optional[Callable] = None,
                 post: Optional[Callable] = None, group: bool = False,
                 accepted_sinks: FrozenSet[str] = ALL_SINKS,
                 finalize: Optional[Callable] = None):
        self._pre = pre
        self._reduce = reduce
        self._post = post
        self._finalize = finalize
        self.group = group
        self.accepted_sinks = frozenset(accepted_sinks)

    def pre(self, ctx):
        if self._pre is not None:
            self._pre(ctx)

    def reduce(self, ctx, values):
        if self._reduce is not None:
            self._reduce(ctx, values)

    def post(self, ctx):
        if self._post is not None:
            self._post(ctx)

    def finalize(self, output):
        return self._finalize(output) if self._finalize is not None else output


def _single_or_all(output):
    # unwrap a lone result, otherwise hand back every record
    records = output.records()
    if len(records) == 1:
        return records[0][1]
    return records


class PassThroughCombiner(Combiner):
    """Emit every incoming value unchanged under the bucket's key"""

    def reduce(self, ctx, values):
        for value in values:
            ctx.collect(ctx.key, value)


class DdoCombiner(PassThroughCombiner):
    """Pass-through keeping every record under its own key, to any sink"""

    group = False
    accepted_sinks = ALL_SINKS


class CollectCombiner(PassThroughCombiner):
    """Pass-through collection into an in-memory list of (key, value) pairs"""

    accepted_sinks = frozenset({MEMORY})

    def finalize(self, output):
        return output.records()


class MeanCoefCombiner(Combiner):
    """
    Weighted average of model coefficients.

    Each value is a dict with 'coef' (sequence of floats), 'n' (number of
    observations the model was fit on) and optionally 'names'. The result is
    sum(coef * n) / sum(n), as a pandas Series when names are known.
    """

    group = True
    accepted_sinks = frozenset({MEMORY})

    def pre(self, ctx):
        ctx.state["total"] = None
        ctx.state["n"] = 0.0
        ctx.state["names"] = None

    def reduce(self, ctx, values):
        if ctx.state["names"] is None and values:
            ctx.state["names"] = values[0].get("names")
        for value in values:
            n = value["n"]
            if n is None or np.isnan(n):
                continue
            weighted = np.asarray(value["coef"], dtype=float) * n
            total = ctx.state["total"]
            ctx.state["total"] = weighted if total is None else total + weighted
            ctx.state["n"] += n

    def post(self, ctx):
        coef = self._weighted_mean(ctx)
        if ctx.state["names"] is not None:
            coef = pd.Series(coef, index=list(ctx.state["names"]))
        ctx.collect("final", coef)

    @staticmethod
    def _weighted_mean(ctx):
        if ctx.state["total"] is None or ctx.state["n"] == 0:
            raise ValueError(f"No weighted coefficients to average for key {ctx.key!r}: "
                             f"every value had a missing or zero 'n'")
        return ctx.state["total"] / ctx.state["n"]

    def finalize(self, output):
        return output.records()[0][1]


class MeanCoefStdErrCombiner(MeanCoefCombiner):
    """
    Weighted coefficient average plus pooled standard errors.

    Values additionally carry 'se', the per-subset standard errors. The pooled
    error is sqrt(sum(se**2) / m**2) over the m subsets.
    """

    def pre(self, ctx):
        super().pre(ctx)
        ctx.state["se_sq"] = None
        ctx.state["subsets"] = 0

    def reduce(self, ctx, values):
        super().reduce(ctx, values)
        for value in values:
            sq = np.asarray(value["se"], dtype=float) ** 2
            se_sq = ctx.state["se_sq"]
            ctx.state["se_sq"] = sq if se_sq is None else se_sq + sq
            ctx.state["subsets"] += 1

    def post(self, ctx):
        names = ctx.state["names"]
        coef = self._weighted_mean(ctx)
        se = np.sqrt(ctx.state["se_sq"] / ctx.state["subsets"] ** 2)
        if names is not None:
            coef = pd.Series(coef, index=list(names))
            se = pd.Series(se, index=list(names))
        ctx.collect("final", {"coef": coef, "se": se, "n_subsets": ctx.state["subsets"]})


class MeanCombiner(Combiner):
    """Elementwise mean of equal-length numeric vectors"""

    group = True
    accepted_sinks = frozenset({MEMORY})

    def pre(self, ctx):
        ctx.state["total"] = None
        ctx.state["n"] = 0

    def reduce(self, ctx, values):
        for value in values:
            vec = np.asarray(value, dtype=float)
            total = ctx.state["total"]
            ctx.state["total"] = vec if total is None else total + vec
            ctx.state["n"] += 1

    def post(self, ctx):
        ctx.collect("final", ctx.state["total"] / ctx.state["n"])

    def finalize(self, output):
        return _single_or_all(output)


def as_frame(value) -> pd.DataFrame:
    """Coerce a value to a DataFrame of rows."""
    if isinstance(value, pd.DataFrame):
        return value
    if isinstance(value, pd.Series):
        return value.to_frame().T
    if isinstance(value, dict):
        return pd.DataFrame([value])
    if isinstance(value, (list, tuple)) and value and all(isinstance(v, dict) for v in value):
        return pd.DataFrame(list(value))
    return pd.DataFrame({"val": [value]})


class RbindCombiner(Combiner):
    """Row-concatenate every value of a key into one DataFrame"""

    group = True
    accepted_sinks = frozenset({MEMORY})

    def pre(self, ctx):
        ctx.state["frames"] = []

    def reduce(self, ctx, values):
        ctx.state["frames"].extend(as_frame(v) for v in values)

    def post(self, ctx):
        frames = ctx.state["frames"]
        data = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()
        ctx.collect(ctx.key, data)

    def map_hook(self, key, value):
        if value is None:
            return None
        if hasattr(value, "__len__") and len(value) == 0:
            return None
        return value

    def finalize(self, output):
        return _single_or_all(output)


class DdfCombiner(RbindCombiner):
    """Grouped pass-through: row-concatenate values per key, keeping the keys"""

    group = False
    accepted_sinks = ALL_SINKS

    def finalize(self, output):
        return output


BUILTIN_COMBINERS = {
    "pass_through": PassThroughCombiner,
    "collect": CollectCombiner,
    "ddo": DdoCombiner,
    "mean_coef": MeanCoefCombiner,
    "mean_coef_stderr": MeanCoefStdErrCombiner,
    "mean": MeanCombiner,
    "rbind": RbindCombiner,
    "ddf": DdfCombiner,
}


def get_combiner(name: str) -> Combiner:
    """Instantiate a built-in combiner by name."""
    if name not in BUILTIN_COMBINERS:
        raise ValueError(f"Unknown combiner '{name}', expected one of {sorted(BUILTIN_COMBINERS)}")
    return BUILTIN_COMBINERS[name]()


def resolve_combiner(reduce: Any) -> Combiner:
    """Accept a Combiner, a built-in name, a (pre, reduce, post) tuple, or None."""
    if reduce is None:
        return PassThroughCombiner()
    if isinstance(reduce, Combiner):
        return reduce
    if isinstance(reduce, str):
        return get_combiner(reduce)
    if isinstance(reduce, tuple) and len(reduce) == 3:
        return FunctionCombiner(*reduce)
    raise TypeError(f"reduce must be a Combiner, a combiner name or a (pre, reduce, post) tuple, "
                    f"not {type(reduce).__name__}")
