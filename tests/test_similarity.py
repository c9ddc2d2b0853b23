from collections import Counter

import pytest

from plagiarism_detection.similarity import (
    CosineMetric,
    JaccardMetric,
    MetricScore,
    OverlapMetric,
    ParaphraseMetric,
    SentenceScorer,
    SimilarityMethod,
    TokenStats,
)


def _bag(*tokens):
    return Counter(tokens)


class TestMetrics:
    def test_individual_metrics(self):
        stats = TokenStats.of(_bag("a", "b", "c", "d", "e"), _bag("a", "b", "c"))

        assert JaccardMetric().compute(stats) == pytest.approx(0.6)
        assert OverlapMetric().compute(stats) == pytest.approx(0.6)
        assert CosineMetric().compute(stats) == pytest.approx(3 / 15 ** 0.5)

    def test_paraphrase_gated_on_length_ratio(self):
        stats = TokenStats.of(_bag("a", "b", "c", "d", "e"), _bag("a", "b", "c"))
        assert ParaphraseMetric().compute(stats) == 0.0

    def test_paraphrase_gated_on_word_overlap(self):
        stats = TokenStats.of(_bag("a", "b", "c", "d"), _bag("a", "b", "x", "y"))
        assert ParaphraseMetric().compute(stats) == 0.0

    def test_multiset_counts(self):
        stats = TokenStats.of(_bag("a", "a", "b"), _bag("a", "b", "b"))
        assert (stats.intersection, stats.union) == (2, 4)

    def test_empty_inputs_score_zero(self):
        stats = TokenStats.of(Counter(), Counter())
        for metric in (JaccardMetric(), OverlapMetric(), CosineMetric(), ParaphraseMetric()):
            assert metric.compute(stats) == 0.0


class TestSentenceScorer:
    def test_reordered_sentence_is_a_full_paraphrase(self):
        result = SentenceScorer().score(_bag("a", "b", "c", "d"), _bag("d", "c", "b", "a"))
        assert result == MetricScore(100.0, SimilarityMethod.PARAPHRASE)

    def test_best_metric_wins(self):
        result = SentenceScorer().score(_bag("a", "b", "c", "d", "e"), _bag("a", "b", "c"))
        assert result == MetricScore(77.46, SimilarityMethod.COSINE)

    def test_ties_prefer_paraphrase_then_jaccard_then_cosine(self):
        result = SentenceScorer().score(
            _bag("a", "b", "c", "d", "e"), _bag("a", "b", "c", "d", "f")
        )
        assert result == MetricScore(80.0, SimilarityMethod.PARAPHRASE)

        tie = MetricScore(50.0, SimilarityMethod.COSINE)
        assert tie.beats(MetricScore(50.0, SimilarityMethod.OVERLAP))
        assert MetricScore(50.0, SimilarityMethod.JACCARD).beats(tie)
        assert not tie.beats(MetricScore(50.01, SimilarityMethod.OVERLAP))

    def test_scores_are_percentages_rounded_to_two_places(self):
        result = SentenceScorer().score(_bag("a", "a", "b"), _bag("a", "b", "b"))
        assert result == MetricScore(66.67, SimilarityMethod.PARAPHRASE)

    def test_custom_metric_set(self):
        scorer = SentenceScorer([JaccardMetric()])
        result = scorer.score(_bag("a", "b"), _bag("b", "c"))
        assert result == MetricScore(33.33, SimilarityMethod.JACCARD)
