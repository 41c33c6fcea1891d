"""
Inverted index MapReduce example.
Creates an index mapping each word to the lines it appears in.
"""

import string

from diskmr.combiners import Combiner

params = {"stopwords": {"a", "an", "the"}}


def map_fn(ctx):
    """
    Map routine: emit (word, document_id) for each word.

    Args:
        ctx: Task context; ctx.keys are line numbers (used as document IDs)
    """
    stopwords = ctx.params["stopwords"]
    for key, line in zip(ctx.keys, ctx.values):
        words = line.translate(str.maketrans('', '', string.punctuation)).split()
        for word in words:
            word = word.lower()
            if word and word not in stopwords:
                ctx.collect(word, f"doc_{key}")


class UniqueDocs(Combiner):
    """Collect the unique, sorted document IDs of a word"""

    def pre(self, ctx):
        ctx.state["docs"] = set()

    def reduce(self, ctx, values):
        ctx.state["docs"].update(values)

    def post(self, ctx):
        ctx.collect(ctx.key, ','.join(sorted(ctx.state["docs"])))


reduce = UniqueDocs()
