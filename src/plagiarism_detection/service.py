import logging
import threading
import time
from datetime import datetime, timezone
from typing import Collection, Dict, Iterable, List, Optional, Tuple

from .avl_index import AVLIndex
from .cache import ReportCache, make_cache_key
from .candidates import CandidateGenerator
from .errors import IndexCorruptionError, PartialIngestionError, PersistenceError, ValidationError
from .locks import ReadWriteLock
from .models import (
    DetectionConfig,
    Document,
    DocumentEntry,
    IngestionResult,
    IngestionState,
    Match,
    PlagiarismReport,
    Posting,
    RemovalResult,
    SaveResult,
    SaveStatus,
    SentenceEntry,
    SnapshotRecord,
    TreeStats,
)
from .persistence import IndexSnapshot, SnapshotStore, record_to_dict
from .preprocess import Preprocessor, Stopwords
from .registry import DocumentRegistry
from .report import ReportBuilder
from .similarity import MetricScore, SentenceScorer
from .thresholds import ThresholdRegistry, ThresholdSettings

_TRANSITIONS = {
    IngestionState.PENDING: {IngestionState.TOKENIZED, IngestionState.FAILED},
    IngestionState.TOKENIZED: {IngestionState.INDEXED, IngestionState.FAILED},
    IngestionState.INDEXED: {IngestionState.PERSISTED, IngestionState.FAILED},
    IngestionState.PERSISTED: set(),
    IngestionState.FAILED: set(),
}


class PlagiarismDetectionService:
    """Sentence-level duplicate detection over a shared AVL token index.

    Build one instance at startup and hand it to whatever serves requests.
    Queries run under a shared lock and mutations under an exclusive one,
    so a query never sees a half-rebalanced tree. Snapshots lag the
    in-memory index until the next save (``force_save``, the auto-saver,
    ``save_on_mutation`` or ``shutdown``).
    """

    def __init__(
        self,
        documents: Iterable[Document] = (),
        config: Optional[DetectionConfig] = None,
        stopwords: Optional[Stopwords] = None,
        store: Optional[SnapshotStore] = None,
        thresholds: Optional[ThresholdRegistry] = None,
    ) -> None:
        self.config = config or DetectionConfig()
        self.preprocessor = Preprocessor(self.config, stopwords)
        self.store = store
        if thresholds is None:
            history = store.load_thresholds() if store is not None else []
            thresholds = ThresholdRegistry(history)
        self.thresholds = thresholds
        self.scorer = SentenceScorer()
        self.cache = ReportCache(self.config.cache_size)

        self._lock = ReadWriteLock()
        self._save_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._index = AVLIndex()
        self._registry = DocumentRegistry()
        self._states: Dict[str, IngestionState] = {}
        self._generation = 0
        self._saved_generation = 0
        self.last_saved: Optional[datetime] = None
        self.initialized = False

        self._autosave_stop = threading.Event()
        self._autosave_thread: Optional[threading.Thread] = None
        self._initialize(list(documents))

    def _initialize(self, docs: List[Document]) -> None:
        if self.store is not None:
            snapshot = self.store.load()
            if snapshot is not None:
                self._restore(snapshot)
        if docs:
            self.add_documents(docs)
        self.initialized = True
        logging.info(
            "Plagiarism index ready: %d documents, %d tokens",
            len(self._registry),
            len(self._index),
        )
        if self.config.autosave_interval > 0:
            self.start_autosave()

    # -------- snapshot restore / rebuild --------
    def _restore(self, snapshot: IndexSnapshot) -> None:
        registry = DocumentRegistry(snapshot.documents)
        if snapshot.stopwords_version != self.preprocessor.stopwords_version:
            logging.warning(
                "Snapshot was tokenized with stopwords %s but %s is loaded; re-tokenizing",
                snapshot.stopwords_version or "<unknown>",
                self.preprocessor.stopwords_version,
            )
            registry = self._retokenized(registry)
            index = self._index_from_registry(registry)
            self._generation += 1
        else:
            try:
                index = AVLIndex.rebuild_from(snapshot.records)
                self._verify_against_registry(index, registry)
            except IndexCorruptionError as exc:
                logging.warning(
                    "Snapshot index rejected (%s); rebuilding from the document registry", exc
                )
                index = self._index_from_registry(registry)
                # stored copy is stale until the next save
                self._generation += 1
        self._index, self._registry = index, registry
        self.last_saved = snapshot.saved_at
        logging.info(
            "Restored snapshot from %s: %d documents, %d tokens",
            snapshot.saved_at.isoformat(),
            len(registry),
            len(index),
        )

    @staticmethod
    def _verify_against_registry(index: AVLIndex, registry: DocumentRegistry) -> None:
        expected = registry.expected_postings()
        actual = {token: set(postings) for token, postings in index.iter_items()}
        if actual != expected:
            missing = sorted(set(expected) - set(actual))[:5]
            extra = sorted(set(actual) - set(expected))[:5]
            raise IndexCorruptionError(
                f"index disagrees with registry (missing tokens {missing}, unexpected {extra})"
            )

    @staticmethod
    def _index_from_registry(registry: DocumentRegistry) -> AVLIndex:
        index = AVLIndex()
        for token, posting in registry.iter_postings():
            index.insert(token, posting)
        index.check_invariants()
        return index

    def _retokenized(self, registry: DocumentRegistry) -> DocumentRegistry:
        return DocumentRegistry(
            DocumentEntry(
                doc_id=entry.doc_id,
                title=entry.title,
                text=entry.text,
                sentences=self.preprocessor.prepare(entry.text),
            )
            for entry in registry
        )

    def rebuild_index(self, retokenize: bool = False) -> TreeStats:
        """Rebuild the whole index from the registry, optionally re-tokenizing every document."""
        with self._lock.write_locked():
            if retokenize:
                self._registry = self._retokenized(self._registry)
            self._index = self._index_from_registry(self._registry)
            self._generation += 1
        logging.info("Index rebuilt from registry (retokenize=%s)", retokenize)
        return self.get_tree_stats()

    # -------- ingestion --------
    def _advance(self, doc_id: str, state: IngestionState) -> None:
        with self._state_lock:
            current = self._states.get(doc_id)
            if state is not IngestionState.PENDING and (
                current is None or state not in _TRANSITIONS[current]
            ):
                # another ingestion of the same id overtook this one
                logging.warning(
                    "Unexpected ingestion transition for %s: %s -> %s", doc_id, current, state
                )
            self._states[doc_id] = state

    def get_ingestion_state(self, doc_id: str) -> Optional[IngestionState]:
        with self._state_lock:
            return self._states.get(doc_id)

    def _validate_text(self, text: str) -> None:
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Text is empty")
        if len(text) > self.config.max_text_length:
            raise ValidationError(
                f"Text has {len(text)} characters, limit is {self.config.max_text_length}"
            )

    def add_document_to_tree(self, document: Document) -> IngestionResult:
        doc_id = document.doc_id
        self._advance(doc_id, IngestionState.PENDING)
        try:
            if not doc_id:
                raise ValidationError("Document id is empty")
            self._validate_text(document.text)
        except ValidationError as exc:
            logging.warning("Document %s rejected: %s", doc_id, exc)
            self._advance(doc_id, IngestionState.FAILED)
            return IngestionResult(doc_id, False, state=IngestionState.FAILED, error=str(exc))

        entry = DocumentEntry(
            doc_id=doc_id,
            title=document.title,
            text=document.text,
            sentences=self.preprocessor.prepare(document.text),
        )
        self._advance(doc_id, IngestionState.TOKENIZED)

        try:
            with self._lock.write_locked():
                self._index_entry(entry)
                self._generation += 1
        except PartialIngestionError as exc:
            logging.error("%s; postings rolled back", exc)
            self._advance(doc_id, IngestionState.FAILED)
            return IngestionResult(
                doc_id,
                False,
                sentence_count=len(entry.sentences),
                state=IngestionState.FAILED,
                error=str(exc),
            )
        self._advance(doc_id, IngestionState.INDEXED)

        result = IngestionResult(
            doc_id,
            True,
            sentence_count=len(entry.sentences),
            unique_token_count=len(entry.unique_tokens),
            state=IngestionState.INDEXED,
        )
        logging.info(
            "Added document %s: %d sentences, %d unique tokens",
            doc_id,
            result.sentence_count,
            result.unique_token_count,
        )
        if self.config.save_on_mutation and self.force_save().success:
            self._advance(doc_id, IngestionState.PERSISTED)
            result.state = IngestionState.PERSISTED
        return result

    def add_documents(self, documents: Iterable[Document]) -> List[IngestionResult]:
        """Ingest each document independently; one failure never stops the batch."""
        results = [self.add_document_to_tree(document) for document in documents]
        failed = [r.doc_id for r in results if not r.success]
        logging.info(
            "Batch ingestion: %d succeeded, %d failed", len(results) - len(failed), len(failed)
        )
        if failed:
            logging.debug("Failed documents: %s", ", ".join(failed))
        return results

    def _index_entry(self, entry: DocumentEntry) -> None:
        """Caller holds the write lock. All-or-nothing: on failure the index is as before."""
        previous = self._registry.get(entry.doc_id)
        if previous is not None:
            self._unindex(previous)
        inserted: List[Tuple[str, Posting]] = []
        try:
            for token, posting in entry.postings():
                if self._index.insert(token, posting):
                    inserted.append((token, posting))
        except Exception as exc:
            for token, posting in reversed(inserted):
                self._index.remove(token, posting)
            if previous is not None:
                for token, posting in previous.postings():
                    self._index.insert(token, posting)
            raise PartialIngestionError(entry.doc_id, str(exc) or type(exc).__name__) from exc
        self._registry.put(entry)

    def _unindex(self, entry: DocumentEntry) -> int:
        removed = 0
        for token, posting in entry.postings():
            if self._index.remove(token, posting):
                removed += 1
        return removed

    def remove_document_from_tree(self, doc_id: str) -> RemovalResult:
        with self._lock.write_locked():
            entry = self._registry.pop(doc_id)
            if entry is None:
                removed = None
            else:
                removed = self._unindex(entry)
                self._generation += 1
        if removed is None:
            logging.warning("Document %s is not indexed; nothing to remove", doc_id)
            return RemovalResult(doc_id, False)
        with self._state_lock:
            self._states.pop(doc_id, None)
        logging.info("Removed document %s (%d postings)", doc_id, removed)
        if self.config.save_on_mutation:
            self.force_save()
        return RemovalResult(doc_id, True, removed_postings=removed)

    # -------- persistence --------
    @property
    def dirty(self) -> bool:
        return self._generation != self._saved_generation

    def force_save(self) -> SaveResult:
        if self.store is None:
            return SaveResult(False, error="No snapshot store configured")
        with self._save_lock:
            with self._lock.read_locked():
                snapshot = IndexSnapshot(
                    records=[record_to_dict(r) for r in self._index.snapshot()],
                    documents=self._registry.entries(),
                    stopwords_version=self.preprocessor.stopwords_version,
                    saved_at=datetime.now(timezone.utc),
                )
                generation = self._generation
            error: Optional[str] = None
            for attempt in range(1, self.config.save_retries + 2):
                try:
                    self.store.save(snapshot)
                except PersistenceError as exc:
                    error = str(exc)
                    logging.warning("Snapshot save attempt %d failed: %s", attempt, exc)
                    continue
                self.last_saved = snapshot.saved_at
                self._saved_generation = generation
                logging.info(
                    "Saved snapshot: %d tokens, %d documents",
                    len(snapshot.records),
                    len(snapshot.documents),
                )
                return SaveResult(True, saved_at=snapshot.saved_at)
        logging.error("Snapshot not saved; in-memory index stays authoritative: %s", error)
        return SaveResult(False, error=error)

    def start_autosave(self) -> None:
        interval = self.config.autosave_interval
        if interval <= 0 or self.store is None:
            return
        if self._autosave_thread is not None and self._autosave_thread.is_alive():
            return
        self._autosave_stop.clear()

        def _loop() -> None:
            while not self._autosave_stop.wait(interval):
                if self.dirty:
                    self.force_save()

        self._autosave_thread = threading.Thread(
            target=_loop, name="plagiarism-autosave", daemon=True
        )
        self._autosave_thread.start()
        logging.info("Auto-save every %.1f seconds", interval)

    def stop_autosave(self) -> None:
        self._autosave_stop.set()
        if self._autosave_thread is not None:
            self._autosave_thread.join()
            self._autosave_thread = None

    def shutdown(self) -> None:
        self.stop_autosave()
        if self.store is not None and self.dirty:
            self.force_save()
        self.initialized = False

    def get_save_status(self) -> SaveStatus:
        return SaveStatus(
            autosave=self._autosave_thread is not None and self._autosave_thread.is_alive(),
            autosave_interval=self.config.autosave_interval,
            last_saved=self.last_saved,
            dirty=self.dirty,
        )

    # -------- introspection --------
    def get_tree_stats(self) -> TreeStats:
        with self._lock.read_locked():
            return TreeStats(
                total_documents=len(self._registry),
                total_tokens=len(self._index),
                total_sentences=self._registry.total_sentences,
                tree_height=self._index.height,
                memory_usage=self._index.estimate_memory(),
                initialized=self.initialized,
                last_saved=self.last_saved,
            )

    def snapshot_records(self) -> List[SnapshotRecord]:
        with self._lock.read_locked():
            return self._index.snapshot()

    def check_index(self) -> None:
        with self._lock.read_locked():
            self._index.check_invariants()

    def cache_stats(self) -> dict:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    # -------- thresholds --------
    def get_thresholds(self) -> ThresholdSettings:
        return self.thresholds.current()

    def update_thresholds(
        self, updated_by: Optional[str] = None, notes: Optional[str] = None, **values: float
    ) -> ThresholdSettings:
        before = self.thresholds.current()
        updated = self.thresholds.update(updated_by=updated_by, notes=notes, **values)
        if updated.version != before.version and self.store is not None:
            try:
                self.store.save_thresholds(updated)
            except PersistenceError as exc:
                logging.error("Threshold version %d not persisted: %s", updated.version, exc)
        return updated

    # -------- query --------
    def check_plagiarism(
        self,
        text: str,
        min_similarity: Optional[float] = None,
        chunk_size: Optional[int] = None,
        max_results: Optional[int] = None,
        time_budget_ms: Optional[float] = None,
        exclude: Collection[str] = (),
    ) -> PlagiarismReport:
        started = time.monotonic()
        self._validate_text(text)
        thresholds = self.thresholds.current()
        chunk_size = max(1, chunk_size or self.config.chunk_size)
        if max_results is None:
            max_results = self.config.max_results
        if time_budget_ms is None:
            time_budget_ms = self.config.time_budget_ms
        deadline = started + time_budget_ms / 1000 if time_budget_ms is not None else None

        try:
            query_sentences = self.preprocessor.prepare(text)
            prepared = True
        except Exception:
            logging.exception("Tokenizing the query failed; report will be partial")
            query_sentences, prepared = [], False
        with self._lock.read_locked():
            key = make_cache_key(
                self.preprocessor.normalize(text),
                generation=self._generation,
                thresholds=thresholds.version,
                stopwords=self.preprocessor.stopwords_version,
                min_similarity=min_similarity,
                max_results=max_results,
                exclude=sorted(exclude),
            )
            cached = self.cache.get(key)
            if cached is not None:
                logging.debug("Report served from cache")
                return cached
            matches, partial = self._collect_matches(
                query_sentences, thresholds, chunk_size, deadline, set(exclude)
            )
            report = self._build_report(
                thresholds,
                query_sentences,
                matches,
                min_similarity,
                max_results,
                partial=partial or not prepared,
            )
        self.cache.put(key, report)
        logging.info(
            "Checked %d sentences against %d documents in %.1f ms: %.2f%% (%s)%s",
            report.total_input_sentences,
            report.total_documents_checked,
            (time.monotonic() - started) * 1000,
            report.duplicate_percentage,
            report.status,
            " [partial]" if report.partial else "",
        )
        return report

    def _build_report(
        self,
        thresholds: ThresholdSettings,
        query_sentences: List[SentenceEntry],
        matches: List[Match],
        min_similarity: Optional[float],
        max_results: Optional[int],
        partial: bool,
    ) -> PlagiarismReport:
        """Caller holds the read lock. A failed aggregation yields an empty partial report."""
        builder = ReportBuilder(thresholds)
        sources = {m.doc_id: self._registry.get(m.doc_id) for m in matches}
        try:
            return builder.build(
                query_sentences,
                matches,
                sources={k: v for k, v in sources.items() if v is not None},
                total_documents_checked=len(self._registry),
                min_similarity=min_similarity,
                max_results=max_results,
                partial=partial,
            )
        except Exception:
            logging.exception("Building the report failed; returning a partial report")
        return builder.build(
            query_sentences,
            [],
            sources={},
            total_documents_checked=len(self._registry),
            partial=True,
        )

    @staticmethod
    def _expired(deadline: Optional[float]) -> bool:
        return deadline is not None and time.monotonic() >= deadline

    def _collect_matches(
        self,
        query_sentences: List[SentenceEntry],
        thresholds: ThresholdSettings,
        chunk_size: int,
        deadline: Optional[float],
        exclude: Collection[str],
    ) -> Tuple[List[Match], bool]:
        """Caller holds the read lock."""
        generator = CandidateGenerator(self._index, self.config.min_overlap_fraction)
        matches: List[Match] = []
        partial = False
        for chunk_start in range(0, len(query_sentences), chunk_size):
            if self._expired(deadline):
                logging.warning(
                    "Time budget exhausted after %d of %d sentences",
                    chunk_start,
                    len(query_sentences),
                )
                return matches, True
            for sentence in query_sentences[chunk_start : chunk_start + chunk_size]:
                if self._expired(deadline):
                    logging.warning("Time budget exhausted at sentence %d", sentence.index)
                    return matches, True
                try:
                    matches.extend(self._match_sentence(sentence, generator, thresholds, exclude))
                except Exception:
                    logging.exception(
                        "Scoring sentence %d failed; report will be partial", sentence.index
                    )
                    partial = True
        return matches, partial

    def _match_sentence(
        self,
        sentence: SentenceEntry,
        generator: CandidateGenerator,
        thresholds: ThresholdSettings,
        exclude: Collection[str],
    ) -> List[Match]:
        query_counts = sentence.counts
        best: Dict[str, Tuple[MetricScore, SentenceEntry]] = {}
        for candidate in generator.generate(sentence.tokens, exclude):
            source = self._registry.sentence(candidate.posting)
            if source is None:
                continue
            result = self.scorer.score(query_counts, source.counts)
            if result.score < thresholds.sentence_threshold:
                continue
            doc_id = candidate.posting.doc_id
            current = best.get(doc_id)
            if (
                current is None
                or result.score > current[0].score
                or (result.score == current[0].score and source.index < current[1].index)
            ):
                best[doc_id] = (result, source)
        return [
            Match(
                query_index=sentence.index,
                doc_id=doc_id,
                source_sentence_index=source.index,
                similarity=result.score,
                method=result.method.value,
                query_text=sentence.text,
                source_text=source.text,
            )
            for doc_id, (result, source) in sorted(best.items())
        ]
