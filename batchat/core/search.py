"""
Free-text ranking of candidate records.

Scoring per field (case-folded):
- exact match: 100
- prefix match: 50
- substring match: 20

A candidate's score is the sum over the configured fields. Candidates that
score 0 are dropped; the rest are ordered by score, highest first, keeping
input order between equal scores.
"""

from dataclasses import dataclass
from typing import Any, Generic, List, Mapping, Optional, Sequence, TypeVar

K = TypeVar("K")

EXACT_SCORE = 100
PREFIX_SCORE = 50
SUBSTRING_SCORE = 20


@dataclass(frozen=True)
class RankedCandidate(Generic[K]):
    """A candidate that matched the query."""

    key: K
    record: Any
    score: int


def _field_value(record: Any, field: str) -> Optional[str]:
    if isinstance(record, Mapping):
        value = record.get(field)
    else:
        value = getattr(record, field, None)
    return value if isinstance(value, str) else None


def score_field(value: Optional[str], folded_query: str) -> int:
    """Score one field value against an already case-folded query."""
    if not value:
        return 0
    folded = value.casefold()
    if folded == folded_query:
        return EXACT_SCORE
    if folded.startswith(folded_query):
        return PREFIX_SCORE
    if folded_query in folded:
        return SUBSTRING_SCORE
    return 0


class SearchRanker:
    """
    Ranks a mapping of candidate records against a query.

    Usage:
        ranker = SearchRanker(fields=["name", "handle"])
        for hit in ranker.rank("al", {"u1": {"name": "Alice"}}):
            print(hit.key, hit.score)
    """

    def __init__(self, fields: Sequence[str]):
        self.fields = tuple(fields)

    def rank(self, query: str, candidates: Mapping[K, Any]) -> List[RankedCandidate[K]]:
        """
        Rank ``candidates`` (key -> record) against ``query``.

        Records may be mappings or objects with attributes; neither the
        mapping nor the records are modified.
        """
        if not query or not query.strip():
            return []
        folded_query = query.casefold()

        hits = []
        for key, record in candidates.items():
            score = sum(score_field(_field_value(record, field), folded_query) for field in self.fields)
            if score > 0:
                hits.append(RankedCandidate(key=key, record=record, score=score))

        # sorted() is stable, so equal scores keep input order
        return sorted(hits, key=lambda hit: hit.score, reverse=True)
