#!/usr/bin/env python3
import argparse
import os
import sys
from pathlib import Path

import requests


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Plagiarism detection API demo")
    parser.add_argument("--query-file", type=Path, help="Path to a text file to check")
    parser.add_argument(
        "--top", type=int, default=3, help="Number of top source documents to display",
    )
    parser.add_argument(
        "--min-similarity",
        type=float,
        help="Drop source documents whose rate is below this value",
    )
    parser.add_argument(
        "--api-url",
        default=os.environ.get("PLAGIARISM_API_URL", "http://localhost:8000"),
        help="Base URL of the plagiarism detection API",
    )
    return parser.parse_args()


def call_check(api_url: str, text: str, min_similarity=None) -> dict:
    payload = {"text": text}
    if min_similarity is not None:
        payload["min_similarity"] = min_similarity
    response = requests.post(f"{api_url}/plagiarism/check", json=payload, timeout=120)
    response.raise_for_status()
    return response.json()


def main() -> None:
    args = parse_args()

    if not args.query_file:
        print("Provide --query-file with the text to check.")
        sys.exit(1)

    text = args.query_file.read_text(encoding="utf-8")
    report = call_check(args.api_url, text, args.min_similarity)

    print(
        f"Duplicate percentage: {report['duplicate_percentage']:.2f}% "
        f"(status {report['status']}, confidence {report['confidence']})"
    )
    print(
        f"Duplicated sentences: {report['total_duplicated_sentences']}"
        f"/{report['total_input_sentences']} (coverage {report['dtotal']:.2%})"
    )
    if report.get("partial"):
        print("Warning: time budget exhausted, report is partial.")
    documents = report.get("documents", [])
    if not documents:
        print("No matching sources found.")
        return

    for idx, document in enumerate(documents[: args.top], start=1):
        print("-" * 80)
        print(f"Source {idx}: {document['title'] or document['doc_id']}")
        print(f"  Duplicate rate: {document['duplicate_rate']:.2f}")
        print(
            f"  Matched sentences: {document['matched_sentences']}"
            f"/{document['total_sentences_in_source']}"
        )
        for match in report["matches"]:
            if match["doc_id"] != document["doc_id"]:
                continue
            print(f"    [{match['method']} {match['similarity']:.2f}] {match['query_text']}")
    print("-" * 80)


if __name__ == "__main__":
    main()
