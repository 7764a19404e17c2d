"""
BM25 Lexical Ranking — fallback when no query embedding is available.

The retriever normally ranks by cosine similarity. If the embedding call
for the query fails, it builds a BM25 index over the same candidate chunks
and ranks those that share at least one term with the query.

Tokenisation: lowercase → strip punctuation (hyphens kept, for part
numbers like "CAT-320") → drop Dutch and English stopwords.

Dependencies:
  pip install rank-bm25>=0.2.2
"""

from __future__ import annotations

import string
from dataclasses import dataclass
from typing import Sequence

from rank_bm25 import BM25Okapi

# ---------------------------------------------------------------------------
# Stopwords (Dutch + English)
# ---------------------------------------------------------------------------

_STOPWORDS = frozenset({
    # nl
    "de", "het", "een", "en", "van", "in", "op", "te", "voor", "met", "is",
    "dat", "die", "er", "aan", "om", "bij", "of", "als", "ook", "naar", "uit",
    "tot", "zijn", "wordt", "worden", "kan", "hoe", "wat", "ik", "je", "u",
    "we", "mijn", "niet", "nog", "dit", "deze", "wel", "maar", "dan",
    # en
    "a", "an", "the", "and", "or", "but", "to", "for", "of", "with", "by",
    "from", "it", "as", "be", "was", "are", "that", "this", "which", "have",
    "has", "had", "not", "no", "can", "do", "does", "how", "what", "i",
})

_PUNCT_TABLE = str.maketrans("", "", string.punctuation.replace("-", ""))


def tokenize(text: str) -> list[str]:
    text = text.lower().translate(_PUNCT_TABLE)
    return [t for t in text.split() if t and t not in _STOPWORDS]


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LexicalHit:
    index: int      # position in the corpus passed to build()
    score: float


# ---------------------------------------------------------------------------
# LexicalIndex
# ---------------------------------------------------------------------------

class LexicalIndex:
    """
    In-memory BM25Okapi index over a list of texts.

    Example::

        index = LexicalIndex.build([c.content for c in candidates])
        hits  = index.search("hydraulische pomp vervangen")
    """

    __slots__ = ("_tokens", "_bm25")

    def __init__(self, tokens: list[list[str]], bm25: BM25Okapi) -> None:
        self._tokens = tokens
        self._bm25   = bm25

    @classmethod
    def build(cls, corpus: Sequence[str]) -> "LexicalIndex":
        if not corpus:
            raise ValueError("LexicalIndex.build() requires a non-empty corpus")
        # BM25Okapi cannot handle an empty document
        tokens = [tokenize(text) or ["<empty>"] for text in corpus]
        return cls(tokens, BM25Okapi(tokens))

    def search(self, query: str) -> list[LexicalHit]:
        """
        Score every document sharing at least one query term.
        Hits are returned in corpus order; callers sort.
        """
        query_tokens = tokenize(query)
        if not query_tokens:
            return []

        scores = self._bm25.get_scores(query_tokens)
        wanted = set(query_tokens)
        return [
            LexicalHit(index=idx, score=float(score))
            for idx, score in enumerate(scores)
            if wanted.intersection(self._tokens[idx])
        ]

    def __len__(self) -> int:
        return len(self._tokens)
