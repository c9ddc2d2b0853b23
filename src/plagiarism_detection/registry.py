from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from .models import DocumentEntry, Posting, SentenceEntry


class DocumentRegistry:
    """Authoritative record of every indexed document and its sentences.

    The inverted index is derived from this registry: removal walks the
    registry entry to find the postings to prune, and a corrupt index is
    rebuilt from here.
    """

    def __init__(self, entries: Iterable[DocumentEntry] = ()) -> None:
        self._entries: Dict[str, DocumentEntry] = {}
        for entry in entries:
            self.put(entry)

    def put(self, entry: DocumentEntry) -> Optional[DocumentEntry]:
        """Store ``entry``, returning the entry it replaced (if any)."""
        previous = self._entries.get(entry.doc_id)
        self._entries[entry.doc_id] = entry
        return previous

    def pop(self, doc_id: str) -> Optional[DocumentEntry]:
        return self._entries.pop(doc_id, None)

    def get(self, doc_id: str) -> Optional[DocumentEntry]:
        return self._entries.get(doc_id)

    def sentence(self, posting: Posting) -> Optional[SentenceEntry]:
        entry = self._entries.get(posting.doc_id)
        if entry is None or not 0 <= posting.sentence_index < len(entry.sentences):
            return None
        return entry.sentences[posting.sentence_index]

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[DocumentEntry]:
        for doc_id in sorted(self._entries):
            yield self._entries[doc_id]

    @property
    def total_sentences(self) -> int:
        return sum(len(entry.sentences) for entry in self._entries.values())

    def expected_postings(self) -> Dict[str, Set[Posting]]:
        """Token -> postings as the registry says the index should hold them."""
        expected: Dict[str, Set[Posting]] = {}
        for entry in self._entries.values():
            for token, posting in entry.postings():
                expected.setdefault(token, set()).add(posting)
        return expected

    def iter_postings(self) -> Iterator[Tuple[str, Posting]]:
        for entry in self:
            yield from entry.postings()

    def entries(self) -> List[DocumentEntry]:
        return list(self)
