import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .errors import PersistenceError
from .models import DocumentEntry, SentenceEntry, SnapshotRecord
from .thresholds import ThresholdSettings

_SCHEMA = """
CREATE TABLE IF NOT EXISTS snapshot_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS index_nodes (
    position INTEGER PRIMARY KEY,
    token TEXT NOT NULL,
    postings TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS documents (
    doc_id TEXT PRIMARY KEY,
    title TEXT,
    text TEXT NOT NULL,
    sentences TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS threshold_history (
    version INTEGER PRIMARY KEY,
    payload TEXT NOT NULL,
    recorded_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


@dataclass
class IndexSnapshot:
    records: List[Dict[str, Any]]
    documents: List[DocumentEntry]
    stopwords_version: str = ""
    saved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def record_to_dict(record: SnapshotRecord) -> Dict[str, Any]:
    return {
        "token": record.token,
        "postings": [
            {"doc_id": p.doc_id, "sentence_index": p.sentence_index}
            for p in record.postings
        ],
    }


def entry_to_dict(entry: DocumentEntry) -> Dict[str, Any]:
    return {
        "doc_id": entry.doc_id,
        "title": entry.title,
        "text": entry.text,
        "sentences": [
            {"index": s.index, "text": s.text, "tokens": list(s.tokens)}
            for s in entry.sentences
        ],
    }


def entry_from_dict(payload: Dict[str, Any]) -> DocumentEntry:
    try:
        return DocumentEntry(
            doc_id=str(payload["doc_id"]),
            title=payload.get("title"),
            text=payload["text"],
            sentences=[
                SentenceEntry(index=int(s["index"]), text=s["text"], tokens=list(s["tokens"]))
                for s in payload["sentences"]
            ],
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise PersistenceError(f"Malformed document entry in snapshot: {exc}") from exc


def _decode_postings(token: str, raw: str) -> Optional[list]:
    # unreadable rows are left for the index rebuild to reject
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logging.warning("Snapshot postings for %r are not valid JSON", token)
        return None


class SnapshotStore(Protocol):
    def save(self, snapshot: IndexSnapshot) -> None: ...
    def load(self) -> Optional[IndexSnapshot]: ...
    def save_thresholds(self, settings: ThresholdSettings) -> None: ...
    def load_thresholds(self) -> List[ThresholdSettings]: ...


def _resolve_sqlite_path(database_url: str) -> Path:
    """Convert a SQLite URL or filesystem path into a Path instance."""
    if database_url.startswith("sqlite:///"):
        return Path(database_url[len("sqlite:///") :])
    return Path(database_url)


class SQLiteSnapshotStore:
    """Keeps the latest index snapshot and the threshold history in SQLite.

    A save replaces the previous snapshot inside one transaction, so a
    reader of the file sees either the old snapshot or the new one.
    """

    def __init__(self, database_url: str) -> None:
        self.path = _resolve_sqlite_path(database_url)

    def _connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path)
        conn.executescript(_SCHEMA)
        return conn

    def save(self, snapshot: IndexSnapshot) -> None:
        try:
            conn = self._connect()
            try:
                with conn:
                    conn.execute("DELETE FROM index_nodes")
                    conn.execute("DELETE FROM documents")
                    conn.executemany(
                        "INSERT INTO index_nodes (position, token, postings) VALUES (?, ?, ?)",
                        (
                            (position, record["token"], json.dumps(record["postings"]))
                            for position, record in enumerate(snapshot.records)
                        ),
                    )
                    conn.executemany(
                        "INSERT INTO documents (doc_id, title, text, sentences) VALUES (?, ?, ?, ?)",
                        (
                            (
                                payload["doc_id"],
                                payload["title"],
                                payload["text"],
                                json.dumps(payload["sentences"], ensure_ascii=False),
                            )
                            for payload in map(entry_to_dict, snapshot.documents)
                        ),
                    )
                    conn.executemany(
                        "INSERT OR REPLACE INTO snapshot_meta (key, value) VALUES (?, ?)",
                        [
                            ("saved_at", snapshot.saved_at.isoformat()),
                            ("stopwords_version", snapshot.stopwords_version),
                        ],
                    )
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as exc:
            raise PersistenceError(f"Could not save snapshot to {self.path}: {exc}") from exc

    def load(self) -> Optional[IndexSnapshot]:
        if not self.path.exists():
            return None
        try:
            conn = self._connect()
            try:
                meta = dict(conn.execute("SELECT key, value FROM snapshot_meta").fetchall())
                if "saved_at" not in meta:
                    return None
                node_rows = conn.execute(
                    "SELECT token, postings FROM index_nodes ORDER BY position"
                ).fetchall()
                doc_rows = conn.execute(
                    "SELECT doc_id, title, text, sentences FROM documents ORDER BY doc_id"
                ).fetchall()
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as exc:
            raise PersistenceError(f"Could not read snapshot from {self.path}: {exc}") from exc

        records = [
            {"token": token, "postings": _decode_postings(token, postings)}
            for token, postings in node_rows
        ]
        try:
            documents = [
                entry_from_dict(
                    {"doc_id": doc_id, "title": title, "text": text, "sentences": json.loads(sentences)}
                )
                for doc_id, title, text, sentences in doc_rows
            ]
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Snapshot documents are not valid JSON: {exc}") from exc
        return IndexSnapshot(
            records=records,
            documents=documents,
            stopwords_version=meta.get("stopwords_version", ""),
            saved_at=datetime.fromisoformat(meta["saved_at"]),
        )

    def save_thresholds(self, settings: ThresholdSettings) -> None:
        try:
            conn = self._connect()
            try:
                with conn:
                    conn.execute(
                        "INSERT OR REPLACE INTO threshold_history (version, payload) VALUES (?, ?)",
                        (settings.version, json.dumps(settings.to_dict())),
                    )
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as exc:
            raise PersistenceError(f"Could not save thresholds to {self.path}: {exc}") from exc

    def load_thresholds(self) -> List[ThresholdSettings]:
        if not self.path.exists():
            return []
        try:
            conn = self._connect()
            try:
                rows = conn.execute(
                    "SELECT payload FROM threshold_history ORDER BY version"
                ).fetchall()
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as exc:
            raise PersistenceError(f"Could not read thresholds from {self.path}: {exc}") from exc
        return [ThresholdSettings.from_dict(json.loads(payload)) for (payload,) in rows]


class MemorySnapshotStore:
    """In-process store (useful for tests or ephemeral runs).

    Snapshots are kept serialised, so a loaded snapshot never shares
    objects with the index that produced it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._payload: Optional[str] = None
        self._thresholds: Dict[int, str] = {}
        self.save_count = 0

    def save(self, snapshot: IndexSnapshot) -> None:
        payload = json.dumps(
            {
                "records": snapshot.records,
                "documents": [entry_to_dict(entry) for entry in snapshot.documents],
                "stopwords_version": snapshot.stopwords_version,
                "saved_at": snapshot.saved_at.isoformat(),
            }
        )
        with self._lock:
            self._payload = payload
            self.save_count += 1

    def load(self) -> Optional[IndexSnapshot]:
        with self._lock:
            payload = self._payload
        if payload is None:
            return None
        data = json.loads(payload)
        return IndexSnapshot(
            records=data["records"],
            documents=[entry_from_dict(entry) for entry in data["documents"]],
            stopwords_version=data["stopwords_version"],
            saved_at=datetime.fromisoformat(data["saved_at"]),
        )

    def save_thresholds(self, settings: ThresholdSettings) -> None:
        with self._lock:
            self._thresholds[settings.version] = json.dumps(settings.to_dict())

    def load_thresholds(self) -> List[ThresholdSettings]:
        with self._lock:
            payloads = [self._thresholds[v] for v in sorted(self._thresholds)]
        return [ThresholdSettings.from_dict(json.loads(p)) for p in payloads]


def make_snapshot_store(url: str) -> SnapshotStore:
    """
    Factory:
      - sqlite:///path or a plain path -> SQLiteSnapshotStore
      - memory://                      -> MemorySnapshotStore
    """
    if url.startswith("memory://"):
        return MemorySnapshotStore()
    if url.startswith("sqlite:///") or "://" not in url:
        return SQLiteSnapshotStore(url)
    raise ValueError(f"Unsupported snapshot store URL: {url}")
