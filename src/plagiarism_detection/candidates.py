import math
from collections import Counter
from typing import Container, List, Sequence

from .avl_index import AVLIndex
from .models import Candidate


class CandidateGenerator:
    """Shortlists indexed sentences that share enough tokens with a query sentence."""

    def __init__(self, index: AVLIndex, min_overlap_fraction: float = 0.3) -> None:
        self.index = index
        self.min_overlap_fraction = min_overlap_fraction

    def min_tally(self, token_count: int) -> int:
        # at least one shared token, even with a zero fraction
        return max(1, math.ceil(self.min_overlap_fraction * token_count - 1e-9))

    def generate(
        self, tokens: Sequence[str], exclude: Container[str] = ()
    ) -> List[Candidate]:
        if not tokens:
            return []
        tally: Counter = Counter()
        for token in sorted(set(tokens)):
            for posting in self.index.search(token):
                if posting.doc_id in exclude:
                    continue
                tally[posting] += 1
        cutoff = self.min_tally(len(set(tokens)))
        candidates = [
            Candidate(posting=posting, tally=count)
            for posting, count in tally.items()
            if count >= cutoff
        ]
        candidates.sort(key=lambda c: (-c.tally, c.posting))
        return candidates

