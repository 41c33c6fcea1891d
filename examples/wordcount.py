"""
Classic MapReduce word count example.
Counts the frequency of each word in (line_number, line) input records.
"""

import string


def map_fn(ctx):
    """
    Map routine: emit (word, 1) for each word of each line.

    Args:
        ctx: Task context; ctx.values holds the text lines of this block
    """
    for line in ctx.values:
        # Remove punctuation and split into words
        words = line.translate(str.maketrans('', '', string.punctuation)).split()
        for word in words:
            ctx.collect(word.lower(), 1)
        ctx.counter("wordcount", "lines", 1)


def pre_fn(ctx):
    ctx.state["count"] = 0


def reduce_fn(ctx, values):
    """Sum the counts of one sub-block into the running total."""
    ctx.state["count"] += sum(values)


def post_fn(ctx):
    ctx.collect(ctx.key, ctx.state["count"])
