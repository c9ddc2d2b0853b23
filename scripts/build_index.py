import argparse
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from plagiarism_detection.loader import load_documents, load_stopwords
from plagiarism_detection.models import DetectionConfig
from plagiarism_detection.persistence import make_snapshot_store
from plagiarism_detection.service import PlagiarismDetectionService


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Ingest a corpus into the plagiarism index and save a snapshot"
    )
    parser.add_argument(
        "corpus",
        type=Path,
        help="Directory of .txt files, a .jsonl file or a .csv file",
    )
    parser.add_argument(
        "--store",
        default="sqlite:///plagiarism_index.db",
        help="Snapshot store URL (sqlite:///path or memory://)",
    )
    parser.add_argument("--stopwords", type=Path, help="Stopword list, one word per line")
    parser.add_argument(
        "--limit", type=int, help="Limit number of documents loaded (for testing)"
    )
    parser.add_argument(
        "--min-sentence-tokens",
        type=int,
        default=3,
        help="Sentences with fewer tokens are neither indexed nor matched",
    )
    parser.add_argument(
        "--retokenize",
        action="store_true",
        help="Re-tokenize every stored document after loading the snapshot",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="[%(asctime)s] %(levelname)s %(message)s",
    )

    stopwords = load_stopwords(args.stopwords) if args.stopwords else None
    config = DetectionConfig(min_sentence_tokens=args.min_sentence_tokens)
    service = PlagiarismDetectionService(
        config=config, stopwords=stopwords, store=make_snapshot_store(args.store)
    )
    if args.retokenize:
        service.rebuild_index(retokenize=True)

    logging.info("Loading documents from %s", args.corpus)
    documents = load_documents(args.corpus, limit=args.limit)
    if not documents:
        raise SystemExit("No documents loaded from the corpus")

    logging.info("Loaded %d documents. Indexing...", len(documents))
    results = service.add_documents(documents)
    for result in results:
        if not result.success:
            logging.warning("Skipped %s: %s", result.doc_id, result.error)

    saved = service.force_save()
    if not saved.success:
        raise SystemExit(f"Snapshot not saved: {saved.error}")

    stats = service.get_tree_stats()
    logging.info(
        "Done. %d documents, %d tokens, %d sentences, tree height %d",
        stats.total_documents,
        stats.total_tokens,
        stats.total_sentences,
        stats.tree_height,
    )


if __name__ == "__main__":
    main()
