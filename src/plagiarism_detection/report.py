from typing import Dict, List, Mapping, Optional, Sequence

from .models import (
    DocumentEntry,
    DocumentReport,
    Match,
    MostSimilarDocument,
    PlagiarismReport,
    SentenceEntry,
)
from .thresholds import ThresholdSettings

CONFIDENCE_LEVELS = ("low", "medium", "high")


def classify_status(percentage: float, thresholds: ThresholdSettings) -> str:
    if percentage > thresholds.high_duplication_threshold:
        return "high"
    if percentage > thresholds.medium_duplication_threshold:
        return "medium"
    return "low"


def estimate_confidence(documents: Sequence[DocumentReport], partial: bool = False) -> str:
    """Confidence grows with corroborating sources and with the top score's margin."""
    if not documents:
        level = "low"
    else:
        top = documents[0].duplicate_rate
        runner_up = documents[1].duplicate_rate if len(documents) > 1 else 0.0
        if len(documents) >= 3 or top > 80:
            level = "high"
        elif len(documents) >= 2 or top - runner_up >= 20:
            level = "medium"
        else:
            level = "low"
    if partial:
        level = CONFIDENCE_LEVELS[max(0, CONFIDENCE_LEVELS.index(level) - 1)]
    return level


def symmetric_overlap(query_tokens: set, source_tokens: set) -> float:
    if not query_tokens or not source_tokens:
        return 0.0
    average = (len(query_tokens) + len(source_tokens)) / 2
    return len(query_tokens & source_tokens) / average


class ReportBuilder:
    """Turns per-sentence matches into the per-document and overall figures.

    A document's rate is the mean similarity of its matched sentences only,
    and the headline percentage is the rate of the top-ranked document, so
    the overall number always equals the first entry of the breakdown.
    """

    def __init__(self, thresholds: ThresholdSettings) -> None:
        self.thresholds = thresholds

    def build(
        self,
        query_sentences: Sequence[SentenceEntry],
        matches: Sequence[Match],
        sources: Mapping[str, DocumentEntry],
        total_documents_checked: int,
        min_similarity: Optional[float] = None,
        max_results: Optional[int] = None,
        partial: bool = False,
    ) -> PlagiarismReport:
        if min_similarity is None:
            min_similarity = self.thresholds.document_comparison_threshold

        per_document: Dict[str, List[Match]] = {}
        for match in matches:
            per_document.setdefault(match.doc_id, []).append(match)

        documents: List[DocumentReport] = []
        for doc_id, doc_matches in per_document.items():
            rate = round(sum(m.similarity for m in doc_matches) / len(doc_matches), 2)
            if rate < min_similarity:
                continue
            entry = sources.get(doc_id)
            documents.append(
                DocumentReport(
                    doc_id=doc_id,
                    title=entry.title if entry else None,
                    duplicate_rate=rate,
                    matched_sentences=len(doc_matches),
                    total_sentences_in_source=len(entry.sentences) if entry else 0,
                    matches=sorted(doc_matches, key=lambda m: m.query_index),
                )
            )
        documents.sort(key=lambda d: (-d.duplicate_rate, -d.matched_sentences, d.doc_id))

        total_input = len(query_sentences)
        duplicated = {m.query_index for d in documents for m in d.matches}
        dtotal = round(len(duplicated) / total_input, 4) if total_input else 0.0

        ranked_matches = sorted(
            (m for d in documents for m in d.matches),
            key=lambda m: (-m.similarity, m.query_index, m.doc_id),
        )

        most_similar = None
        dab = 0.0
        if documents:
            top = documents[0]
            most_similar = MostSimilarDocument(
                doc_id=top.doc_id, title=top.title, similarity=top.duplicate_rate
            )
            query_tokens = {t for s in query_sentences for t in s.tokens}
            entry = sources.get(top.doc_id)
            source_tokens = set(entry.unique_tokens) if entry else set()
            dab = round(symmetric_overlap(query_tokens, source_tokens), 4)

        duplicate_percentage = documents[0].duplicate_rate if documents else 0.0
        confidence = estimate_confidence(documents, partial=partial)

        if max_results is not None:
            documents = documents[:max_results]
            ranked_matches = ranked_matches[:max_results]

        return PlagiarismReport(
            duplicate_percentage=duplicate_percentage,
            status=classify_status(duplicate_percentage, self.thresholds),
            confidence=confidence,
            matches=ranked_matches,
            documents=documents,
            sources=[d.title or d.doc_id for d in documents],
            total_documents_checked=total_documents_checked,
            total_input_sentences=total_input,
            total_duplicated_sentences=len(duplicated),
            dtotal=dtotal,
            dab=dab,
            most_similar_document=most_similar,
            partial=partial,
        )
