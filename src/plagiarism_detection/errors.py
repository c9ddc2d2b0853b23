class PlagiarismDetectionError(Exception):
    """Base class for errors raised by the plagiarism detection package."""


class ValidationError(PlagiarismDetectionError):
    """Input rejected before any processing took place."""


class PartialIngestionError(PlagiarismDetectionError):
    """Indexing stopped part-way through a document.

    Postings already inserted for the document have been rolled back by the
    time this error reaches the caller.
    """

    def __init__(self, doc_id: str, message: str) -> None:
        super().__init__(f"Ingestion of {doc_id} failed: {message}")
        self.doc_id = doc_id


class IndexCorruptionError(PlagiarismDetectionError):
    """The index (or a snapshot of it) violates a structural invariant."""


class PersistenceError(PlagiarismDetectionError):
    """A snapshot could not be written to or read from its store."""
