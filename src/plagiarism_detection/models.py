from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence


@dataclass
class Document:
    doc_id: str
    title: Optional[str]
    text: str
    metadata: Optional[dict] = None


@dataclass(frozen=True, order=True)
class Posting:
    doc_id: str
    sentence_index: int


@dataclass
class SentenceEntry:
    index: int
    text: str
    tokens: Sequence[str]

    @property
    def counts(self) -> Counter:
        return Counter(self.tokens)


@dataclass
class DocumentEntry:
    doc_id: str
    title: Optional[str]
    text: str
    sentences: List[SentenceEntry]

    @property
    def unique_tokens(self) -> List[str]:
        return sorted({token for sentence in self.sentences for token in sentence.tokens})

    def postings(self):
        """Yield ``(token, Posting)`` pairs, one per distinct token per sentence."""
        for sentence in self.sentences:
            posting = Posting(self.doc_id, sentence.index)
            for token in sorted(set(sentence.tokens)):
                yield token, posting


@dataclass(frozen=True)
class SnapshotRecord:
    token: str
    postings: Sequence[Posting]


@dataclass
class Candidate:
    posting: Posting
    tally: int


@dataclass
class Match:
    query_index: int
    doc_id: str
    source_sentence_index: int
    similarity: float
    method: str
    query_text: str = ""
    source_text: str = ""


@dataclass
class DocumentReport:
    doc_id: str
    title: Optional[str]
    duplicate_rate: float
    matched_sentences: int
    total_sentences_in_source: int
    matches: List[Match] = field(default_factory=list)


@dataclass
class MostSimilarDocument:
    doc_id: str
    title: Optional[str]
    similarity: float


@dataclass
class PlagiarismReport:
    duplicate_percentage: float
    status: str
    confidence: str
    matches: List[Match]
    documents: List[DocumentReport]
    sources: List[str]
    total_documents_checked: int
    total_input_sentences: int
    total_duplicated_sentences: int
    dtotal: float
    dab: float
    most_similar_document: Optional[MostSimilarDocument] = None
    partial: bool = False


class IngestionState(str, Enum):
    PENDING = "pending"
    TOKENIZED = "tokenized"
    INDEXED = "indexed"
    PERSISTED = "persisted"
    FAILED = "failed"


@dataclass
class IngestionResult:
    doc_id: str
    success: bool
    sentence_count: int = 0
    unique_token_count: int = 0
    state: IngestionState = IngestionState.PENDING
    error: Optional[str] = None


@dataclass
class RemovalResult:
    doc_id: str
    success: bool
    removed_postings: int = 0


@dataclass
class SaveResult:
    success: bool
    saved_at: Optional[datetime] = None
    error: Optional[str] = None


@dataclass
class TreeStats:
    total_documents: int
    total_tokens: int
    total_sentences: int
    tree_height: int
    memory_usage: int
    initialized: bool
    last_saved: Optional[datetime] = None


@dataclass
class SaveStatus:
    autosave: bool
    autosave_interval: float
    last_saved: Optional[datetime]
    dirty: bool


@dataclass
class DetectionConfig:
    min_sentence_tokens: int = 3
    min_overlap_fraction: float = 0.3
    max_text_length: int = 200_000
    lowercase: bool = True
    strip_accents: bool = False
    chunk_size: int = 50
    max_results: Optional[int] = None
    time_budget_ms: Optional[float] = None
    cache_size: int = 128
    autosave_interval: float = 0.0
    save_on_mutation: bool = False
    save_retries: int = 1
