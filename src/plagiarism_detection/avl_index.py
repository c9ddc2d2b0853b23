import sys
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Set, Tuple, Union

from .errors import IndexCorruptionError
from .models import Posting, SnapshotRecord


@dataclass
class _Node:
    token: str
    postings: Set[Posting]
    height: int = 1
    left: Optional["_Node"] = None
    right: Optional["_Node"] = None


def _height(node: Optional[_Node]) -> int:
    return node.height if node is not None else 0


def _balance(node: Optional[_Node]) -> int:
    if node is None:
        return 0
    return _height(node.left) - _height(node.right)


def _update_height(node: _Node) -> None:
    node.height = 1 + max(_height(node.left), _height(node.right))


def _rotate_right(y: _Node) -> _Node:
    x = y.left
    assert x is not None
    y.left = x.right
    x.right = y
    _update_height(y)
    _update_height(x)
    return x


def _rotate_left(x: _Node) -> _Node:
    y = x.right
    assert y is not None
    x.right = y.left
    y.left = x
    _update_height(x)
    _update_height(y)
    return y


def _rebalance(node: _Node) -> _Node:
    _update_height(node)
    balance = _balance(node)
    if balance > 1:
        if _balance(node.left) < 0:
            # left-right case
            node.left = _rotate_left(node.left)
        return _rotate_right(node)
    if balance < -1:
        if _balance(node.right) > 0:
            # right-left case
            node.right = _rotate_right(node.right)
        return _rotate_left(node)
    return node


RecordLike = Union[SnapshotRecord, Mapping[str, Any]]


def _coerce_posting(raw: Any) -> Posting:
    if isinstance(raw, Posting):
        return raw
    try:
        if isinstance(raw, Mapping):
            doc_id, sentence_index = raw["doc_id"], raw["sentence_index"]
        else:
            doc_id, sentence_index = raw
    except (KeyError, TypeError, ValueError) as exc:
        raise IndexCorruptionError(f"Malformed posting {raw!r}") from exc
    if not isinstance(sentence_index, int) or sentence_index < 0:
        raise IndexCorruptionError(f"Malformed sentence index in posting {raw!r}")
    return Posting(str(doc_id), sentence_index)


def _coerce_record(raw: RecordLike) -> Tuple[str, List[Posting]]:
    if isinstance(raw, SnapshotRecord):
        token, postings = raw.token, raw.postings
    else:
        try:
            token, postings = raw["token"], raw["postings"]
        except (KeyError, TypeError) as exc:
            raise IndexCorruptionError(f"Malformed snapshot record {raw!r}") from exc
    if not isinstance(token, str) or not token:
        raise IndexCorruptionError(f"Snapshot record has invalid token {token!r}")
    if not isinstance(postings, (list, tuple)):
        raise IndexCorruptionError(f"Snapshot record for {token!r} has unreadable postings")
    coerced = [_coerce_posting(p) for p in postings]
    if not coerced:
        raise IndexCorruptionError(f"Snapshot record for {token!r} has no postings")
    if len(set(coerced)) != len(coerced):
        raise IndexCorruptionError(f"Snapshot record for {token!r} repeats a posting")
    return token, coerced


class AVLIndex:
    """Inverted index from token to postings, stored as an AVL tree.

    One node per distinct token. Every mutation rebalances the path it
    touched before returning, so balance factors stay in {-1, 0, 1} between
    calls. The index does no locking of its own.
    """

    def __init__(self) -> None:
        self._root: Optional[_Node] = None
        self._size = 0
        self._posting_count = 0

    # -------- mutation --------
    def insert(self, token: str, posting: Posting) -> bool:
        """Add ``posting`` under ``token``. Returns False if it was already there."""
        added = False

        def _ins(node: Optional[_Node]) -> _Node:
            nonlocal added
            if node is None:
                added = True
                self._size += 1
                return _Node(token=token, postings={posting})
            if token == node.token:
                if posting not in node.postings:
                    node.postings.add(posting)
                    added = True
                return node
            if token < node.token:
                node.left = _ins(node.left)
            else:
                node.right = _ins(node.right)
            return _rebalance(node)

        self._root = _ins(self._root)
        if added:
            self._posting_count += 1
        return added

    def remove(self, token: str, posting: Posting) -> bool:
        """Drop ``posting`` from ``token``; deletes the node once it has no postings."""
        node = self._find(token)
        if node is None or posting not in node.postings:
            return False
        node.postings.discard(posting)
        self._posting_count -= 1
        if not node.postings:
            self._root = self._delete(self._root, token)
            self._size -= 1
        return True

    def _delete(self, node: Optional[_Node], token: str) -> Optional[_Node]:
        if node is None:
            return None
        if token < node.token:
            node.left = self._delete(node.left, token)
        elif token > node.token:
            node.right = self._delete(node.right, token)
        else:
            if node.left is None:
                return node.right
            if node.right is None:
                return node.left
            successor = node.right
            while successor.left is not None:
                successor = successor.left
            node.token, node.postings = successor.token, successor.postings
            node.right = self._delete(node.right, successor.token)
        return _rebalance(node)

    def clear(self) -> None:
        self._root = None
        self._size = 0
        self._posting_count = 0

    # -------- lookup --------
    def _find(self, token: str) -> Optional[_Node]:
        node = self._root
        while node is not None:
            if token == node.token:
                return node
            node = node.left if token < node.token else node.right
        return None

    def search(self, token: str) -> List[Posting]:
        node = self._find(token)
        if node is None:
            return []
        return sorted(node.postings)

    def __contains__(self, token: object) -> bool:
        return isinstance(token, str) and self._find(token) is not None

    def __len__(self) -> int:
        return self._size

    @property
    def height(self) -> int:
        return _height(self._root)

    @property
    def posting_count(self) -> int:
        return self._posting_count

    def iter_items(self) -> Iterator[Tuple[str, List[Posting]]]:
        """Yield ``(token, sorted postings)`` in token order."""

        def _inorder(n: Optional[_Node]) -> Iterator[Tuple[str, List[Posting]]]:
            if n is None:
                return
            yield from _inorder(n.left)
            yield n.token, sorted(n.postings)
            yield from _inorder(n.right)

        yield from _inorder(self._root)

    def structure(self) -> List[Tuple[str, int]]:
        """Pre-order ``(token, height)`` pairs; equal lists mean equal tree shapes."""
        shape: List[Tuple[str, int]] = []

        def _preorder(n: Optional[_Node]) -> None:
            if n is None:
                return
            shape.append((n.token, n.height))
            _preorder(n.left)
            _preorder(n.right)

        _preorder(self._root)
        return shape

    def estimate_memory(self) -> int:
        total = sys.getsizeof(self)
        stack = [self._root] if self._root is not None else []
        while stack:
            node = stack.pop()
            total += sys.getsizeof(node) + sys.getsizeof(node.token)
            total += sys.getsizeof(node.postings)
            total += sum(sys.getsizeof(p) for p in node.postings)
            stack.extend(child for child in (node.left, node.right) if child is not None)
        return total

    # -------- snapshot --------
    def snapshot(self) -> List[SnapshotRecord]:
        return [
            SnapshotRecord(token=token, postings=tuple(postings))
            for token, postings in self.iter_items()
        ]

    @classmethod
    def rebuild_from(cls, records: Iterable[RecordLike]) -> "AVLIndex":
        """Rebuild an index from snapshot records.

        Tokens are re-inserted in sorted order, so the same records always
        produce the same tree shape. Records must arrive in strictly
        increasing token order, which is how :meth:`snapshot` emits them.
        """
        index = cls()
        previous: Optional[str] = None
        for raw in records:
            token, postings = _coerce_record(raw)
            if previous is not None and token <= previous:
                raise IndexCorruptionError(
                    f"Snapshot tokens out of order: {previous!r} then {token!r}"
                )
            previous = token
            for posting in sorted(postings):
                index.insert(token, posting)
        index.check_invariants()
        return index

    def check_invariants(self) -> None:
        """Raise :class:`IndexCorruptionError` if ordering, heights or balance are off."""
        count = 0

        def _check(n: Optional[_Node], low: Optional[str], high: Optional[str]) -> int:
            nonlocal count
            if n is None:
                return 0
            count += 1
            if (low is not None and n.token <= low) or (high is not None and n.token >= high):
                raise IndexCorruptionError(f"Token {n.token!r} breaks search-tree ordering")
            if not n.postings:
                raise IndexCorruptionError(f"Token {n.token!r} has no postings")
            left = _check(n.left, low, n.token)
            right = _check(n.right, n.token, high)
            if abs(left - right) > 1:
                raise IndexCorruptionError(
                    f"Token {n.token!r} has balance factor {left - right}"
                )
            if n.height != 1 + max(left, right):
                raise IndexCorruptionError(f"Token {n.token!r} has stale height {n.height}")
            return n.height

        _check(self._root, None, None)
        if count != self._size:
            raise IndexCorruptionError(f"Node count {count} differs from size {self._size}")
