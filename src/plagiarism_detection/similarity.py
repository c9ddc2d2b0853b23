import math
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Sequence


class SimilarityMethod(str, Enum):
    JACCARD = "jaccard"
    OVERLAP = "overlap"
    COSINE = "cosine"
    PARAPHRASE = "paraphrase"


# Ties go to the stricter metric.
_TIE_PRECEDENCE = {
    SimilarityMethod.PARAPHRASE: 3,
    SimilarityMethod.JACCARD: 2,
    SimilarityMethod.COSINE: 1,
    SimilarityMethod.OVERLAP: 0,
}


@dataclass(frozen=True)
class MetricScore:
    score: float
    method: SimilarityMethod

    def beats(self, other: "MetricScore") -> bool:
        if self.score != other.score:
            return self.score > other.score
        return _TIE_PRECEDENCE[self.method] > _TIE_PRECEDENCE[other.method]


@dataclass(frozen=True)
class TokenStats:
    """Multiset sizes shared by every metric for one sentence pair."""

    intersection: int
    union: int
    query_size: int
    candidate_size: int

    @classmethod
    def of(cls, query: Counter, candidate: Counter) -> "TokenStats":
        return cls(
            intersection=sum((query & candidate).values()),
            union=sum((query | candidate).values()),
            query_size=sum(query.values()),
            candidate_size=sum(candidate.values()),
        )


class SimilarityMetric(ABC):
    method: SimilarityMethod

    @abstractmethod
    def compute(self, stats: TokenStats) -> float: ...

    def score(self, stats: TokenStats) -> MetricScore:
        return MetricScore(score=self.compute(stats), method=self.method)


class JaccardMetric(SimilarityMetric):
    method = SimilarityMethod.JACCARD

    def compute(self, stats: TokenStats) -> float:
        if stats.union == 0:
            return 0.0
        return stats.intersection / stats.union


class OverlapMetric(SimilarityMetric):
    method = SimilarityMethod.OVERLAP

    def compute(self, stats: TokenStats) -> float:
        if stats.query_size == 0:
            return 0.0
        return stats.intersection / stats.query_size


class CosineMetric(SimilarityMetric):
    method = SimilarityMethod.COSINE

    def compute(self, stats: TokenStats) -> float:
        denom = math.sqrt(stats.query_size * stats.candidate_size)
        if denom == 0:
            return 0.0
        return stats.intersection / denom


class ParaphraseMetric(SimilarityMetric):
    """Word overlap scaled by length ratio, gated on both being high enough."""

    method = SimilarityMethod.PARAPHRASE

    def __init__(self, min_word_overlap: float = 0.6, min_length_ratio: float = 0.7) -> None:
        self.min_word_overlap = min_word_overlap
        self.min_length_ratio = min_length_ratio

    def compute(self, stats: TokenStats) -> float:
        longest = max(stats.query_size, stats.candidate_size)
        if longest == 0:
            return 0.0
        word_overlap = stats.intersection / longest
        length_ratio = min(stats.query_size, stats.candidate_size) / longest
        if word_overlap < self.min_word_overlap or length_ratio < self.min_length_ratio:
            return 0.0
        return word_overlap * length_ratio


class SentenceScorer:
    """Scores a sentence pair with every metric and keeps the best one."""

    def __init__(self, metrics: Sequence[SimilarityMetric] = ()) -> None:
        self.metrics = list(metrics) or [
            JaccardMetric(),
            OverlapMetric(),
            CosineMetric(),
            ParaphraseMetric(),
        ]

    def score(self, query: Counter, candidate: Counter) -> MetricScore:
        stats = TokenStats.of(query, candidate)
        best = None
        for metric in self.metrics:
            result = metric.score(stats)
            result = MetricScore(score=round(result.score * 100, 2), method=result.method)
            if best is None or result.beats(best):
                best = result
        assert best is not None
        return best
