import random

import pytest

from plagiarism_detection.avl_index import AVLIndex
from plagiarism_detection.errors import IndexCorruptionError
from plagiarism_detection.models import Posting, SnapshotRecord


def _balanced(index: AVLIndex) -> None:
    index.check_invariants()


class TestInsertAndSearch:
    def test_search_returns_sorted_postings(self):
        index = AVLIndex()
        index.insert("river", Posting("b", 1))
        index.insert("river", Posting("a", 3))
        index.insert("river", Posting("a", 0))

        assert index.search("river") == [Posting("a", 0), Posting("a", 3), Posting("b", 1)]
        assert index.search("lake") == []
        assert "river" in index
        assert len(index) == 1
        assert index.posting_count == 3

    def test_duplicate_posting_is_ignored(self):
        index = AVLIndex()
        assert index.insert("river", Posting("a", 0)) is True
        assert index.insert("river", Posting("a", 0)) is False
        assert index.posting_count == 1

    @pytest.mark.parametrize(
        "order",
        [
            ["c", "b", "a"],  # left-left
            ["a", "b", "c"],  # right-right
            ["c", "a", "b"],  # left-right
            ["a", "c", "b"],  # right-left
        ],
    )
    def test_rotations_restore_balance(self, order):
        index = AVLIndex()
        for token in order:
            index.insert(token, Posting("d", 0))

        assert index.height == 2
        assert index.structure()[0] == ("b", 2)
        _balanced(index)

    def test_sorted_inserts_stay_logarithmic(self):
        index = AVLIndex()
        for i in range(1023):
            index.insert(f"token{i:04d}", Posting("d", i))

        assert len(index) == 1023
        assert index.height == 10
        _balanced(index)


class TestRemove:
    def test_remove_last_posting_deletes_node(self):
        index = AVLIndex()
        index.insert("river", Posting("a", 0))
        index.insert("river", Posting("b", 0))

        assert index.remove("river", Posting("a", 0)) is True
        assert "river" in index
        assert index.remove("river", Posting("b", 0)) is True
        assert "river" not in index
        assert len(index) == 0
        assert index.remove("river", Posting("b", 0)) is False

    def test_remove_node_with_two_children(self):
        index = AVLIndex()
        for token in ["d", "b", "f", "a", "c", "e", "g"]:
            index.insert(token, Posting("x", 0))

        index.remove("d", Posting("x", 0))

        assert [token for token, _ in index.iter_items()] == ["a", "b", "c", "e", "f", "g"]
        _balanced(index)

    def test_random_mutations_keep_every_state_balanced(self):
        rng = random.Random(7)
        index = AVLIndex()
        live = set()
        for _ in range(2000):
            token = f"t{rng.randrange(300)}"
            posting = Posting(f"doc{rng.randrange(5)}", rng.randrange(3))
            if rng.random() < 0.6:
                index.insert(token, posting)
                live.add((token, posting))
            else:
                assert index.remove(token, posting) == ((token, posting) in live)
                live.discard((token, posting))
            _balanced(index)

        expected = {}
        for token, posting in live:
            expected.setdefault(token, set()).add(posting)
        assert {t: set(p) for t, p in index.iter_items()} == expected
        assert index.posting_count == len(live)


class TestSnapshot:
    def _build(self) -> AVLIndex:
        index = AVLIndex()
        for i, token in enumerate(["mango", "apple", "kiwi", "banana", "cherry", "zucchini"]):
            index.insert(token, Posting("d", i))
            index.insert(token, Posting("e", 0))
        return index

    def test_snapshot_is_token_ordered(self):
        records = self._build().snapshot()
        tokens = [r.token for r in records]
        assert tokens == sorted(tokens)
        assert all(list(r.postings) == sorted(r.postings) for r in records)

    def test_rebuild_is_deterministic(self):
        records = self._build().snapshot()
        first = AVLIndex.rebuild_from(records)
        second = AVLIndex.rebuild_from(records)

        assert first.structure() == second.structure()
        assert first.snapshot() == records

    def test_rebuild_accepts_plain_dicts(self):
        raw = [
            {"token": "a", "postings": [{"doc_id": "d", "sentence_index": 0}]},
            {"token": "b", "postings": [["d", 1]]},
        ]
        index = AVLIndex.rebuild_from(raw)
        assert index.search("b") == [Posting("d", 1)]

    @pytest.mark.parametrize(
        "records",
        [
            [{"token": "b", "postings": [["d", 0]]}, {"token": "a", "postings": [["d", 0]]}],
            [{"token": "a", "postings": [["d", 0]]}, {"token": "a", "postings": [["d", 1]]}],
            [{"token": "a", "postings": []}],
            [{"token": "a", "postings": [["d", -1]]}],
            [{"token": "a", "postings": [["d", 0], ["d", 0]]}],
            [{"token": "a", "postings": None}],
            [{"postings": [["d", 0]]}],
        ],
    )
    def test_corrupt_records_are_rejected(self, records):
        with pytest.raises(IndexCorruptionError):
            AVLIndex.rebuild_from(records)

    def test_check_invariants_detects_stale_height(self):
        index = self._build()
        index._root.height += 5
        with pytest.raises(IndexCorruptionError):
            index.check_invariants()

    def test_snapshot_record_objects_round_trip(self):
        records = [SnapshotRecord("x", (Posting("d", 0),))]
        assert AVLIndex.rebuild_from(records).snapshot() == records
