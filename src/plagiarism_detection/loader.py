import json
import logging
from pathlib import Path
from typing import List, Optional

import pandas as pd

from .models import Document
from .preprocess import Stopwords

_RESERVED_KEYS = {"doc_id", "id", "title", "text"}


def load_jsonl(path: Path, limit: Optional[int] = None) -> List[Document]:
    documents: List[Document] = []
    with path.open("r", encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            payload = json.loads(line)
            doc_id = payload.get("doc_id", payload.get("id"))
            if doc_id is None:
                logging.warning("%s:%d has no doc_id, skipped", path, line_no)
                continue
            documents.append(
                Document(
                    doc_id=str(doc_id),
                    title=payload.get("title"),
                    text=payload.get("text") or "",
                    metadata={k: v for k, v in payload.items() if k not in _RESERVED_KEYS},
                )
            )
            if limit is not None and len(documents) >= limit:
                break
    return documents


def load_csv(
    path: Path,
    text_column: str = "text",
    id_column: str = "doc_id",
    title_column: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Document]:
    frame = pd.read_csv(path, nrows=limit)
    missing = {text_column, id_column} - set(frame.columns)
    if missing:
        raise ValueError(f"{path} lacks column(s): {', '.join(sorted(missing))}")
    documents: List[Document] = []
    for _, row in frame.iterrows():
        title = (
            str(row[title_column])
            if title_column and not pd.isna(row[title_column])
            else None
        )
        text = str(row[text_column]) if not pd.isna(row[text_column]) else ""
        documents.append(
            Document(
                doc_id=str(row[id_column]),
                title=title,
                text=text,
                metadata={"source_path": str(path)},
            )
        )
    return documents


def load_text_directory(
    directory: Path,
    pattern: str = "*.txt",
    encoding: str = "utf-8-sig",
    limit: Optional[int] = None,
    recursive: bool = False,
) -> List[Document]:
    """Each non-blank file becomes a document whose id is its path relative to ``directory``."""
    if not directory.is_dir():
        raise FileNotFoundError(f"Directory {directory} not found")

    files = sorted(directory.rglob(pattern) if recursive else directory.glob(pattern))
    documents: List[Document] = []
    blank: List[str] = []
    for file in files:
        text = file.read_text(encoding=encoding)
        if not text.strip():
            blank.append(file.name)
            continue
        documents.append(
            Document(
                doc_id=file.relative_to(directory).with_suffix("").as_posix(),
                title=_derive_title(text) or file.stem,
                text=text,
                metadata={"source_path": str(file)},
            )
        )
        if limit is not None and len(documents) >= limit:
            break
    if blank:
        logging.warning("Skipped %d blank file(s) in %s: %s", len(blank), directory, ", ".join(blank))
    logging.info("Loaded %d documents from %s", len(documents), directory)
    return documents


def load_documents(path: Path, limit: Optional[int] = None) -> List[Document]:
    """Load a corpus from a directory of .txt files, a .jsonl file or a .csv file."""
    if path.is_dir():
        return load_text_directory(path, limit=limit)
    suffix = path.suffix.lower()
    if suffix == ".jsonl":
        return load_jsonl(path, limit=limit)
    if suffix == ".csv":
        return load_csv(path, title_column=None, limit=limit)
    raise ValueError(f"Unsupported corpus source: {path}")


def _derive_title(text: str, max_length: int = 80) -> Optional[str]:
    """First non-blank line without trailing sentence punctuation, cut at a word boundary."""
    line = next((line.strip() for line in text.splitlines() if line.strip()), None)
    if line is None:
        return None
    line = line.rstrip(".!?…:;")
    if len(line) <= max_length:
        return line or None
    return line[:max_length].rsplit(" ", 1)[0] + "…"


def load_stopwords(path: Path, encoding: str = "utf-8") -> Stopwords:
    """Read a stopword list, one word or phrase per line; ``#`` starts a comment."""
    if not path.exists():
        raise FileNotFoundError(f"Stopword file {path} not found")
    words: List[str] = []
    with path.open("r", encoding=encoding) as handle:
        for line in handle:
            word = line.split("#", 1)[0].strip()
            if word:
                words.append(word)
    stopwords = Stopwords.from_words(words)
    logging.info(
        "Loaded %d stopwords from %s (version %s)", len(stopwords), path, stopwords.version
    )
    return stopwords
