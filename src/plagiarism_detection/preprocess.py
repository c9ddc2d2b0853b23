import hashlib
import re
import unicodedata
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional

from nltk.tokenize import RegexpTokenizer

from .models import DetectionConfig, SentenceEntry


_SENTENCE_SPLITTER = RegexpTokenizer(r"[.!?…]+|\n+", gaps=True)
_WORD_TOKENIZER = RegexpTokenizer(r"[^\W\d_]+")


def _canonical(word: str) -> str:
    return unicodedata.normalize("NFC", word).strip().lower()


@dataclass(frozen=True)
class Stopwords:
    words: FrozenSet[str]
    version: str

    @classmethod
    def from_words(cls, words: Iterable[str]) -> "Stopwords":
        cleaned = frozenset(w for w in (_canonical(word) for word in words) if w)
        payload = "\n".join(sorted(cleaned)).encode("utf-8")
        return cls(words=cleaned, version=hashlib.sha256(payload).hexdigest()[:16])

    @classmethod
    def empty(cls) -> "Stopwords":
        return cls.from_words([])

    def __contains__(self, token: object) -> bool:
        return token in self.words

    def __len__(self) -> int:
        return len(self.words)


class Preprocessor:
    """Turns raw text into sentences and per-sentence token lists.

    Output depends only on the text, the config and the stopword version,
    so the same input always tokenizes the same way.
    """

    def __init__(
        self, config: DetectionConfig, stopwords: Optional[Stopwords] = None
    ) -> None:
        self.config = config
        self.stopwords = stopwords or Stopwords.empty()
        if config.strip_accents:
            self._stop_tokens = frozenset(
                self._strip_accents(word) for word in self.stopwords.words
            )
        else:
            self._stop_tokens = self.stopwords.words

    @property
    def stopwords_version(self) -> str:
        return self.stopwords.version

    def normalize(self, text: str) -> str:
        normalized = unicodedata.normalize("NFC", text)
        if self.config.lowercase:
            normalized = normalized.lower()
        if self.config.strip_accents:
            normalized = self._strip_accents(normalized)
        return self._normalize_whitespace(normalized)

    @staticmethod
    def _normalize_whitespace(text: str) -> str:
        return re.sub(r"\s+", " ", text).strip()

    @staticmethod
    def _strip_accents(text: str) -> str:
        stripped = "".join(
            c
            for c in unicodedata.normalize("NFKD", text)
            if not unicodedata.combining(c)
        )
        # đ/Đ carry no combining mark and survive NFKD
        return stripped.replace("đ", "d").replace("Đ", "D")

    def split_sentences(self, text: str) -> List[str]:
        text = unicodedata.normalize("NFC", text)
        sentences: List[str] = []
        for piece in _SENTENCE_SPLITTER.tokenize(text):
            sentence = self._normalize_whitespace(piece)
            if sentence:
                sentences.append(sentence)
        return sentences

    def tokenize(self, sentence: str) -> List[str]:
        normalized = self.normalize(sentence)
        return [
            token
            for token in _WORD_TOKENIZER.tokenize(normalized)
            if not self._is_stopword(token)
        ]

    def _is_stopword(self, token: str) -> bool:
        # the stopword list is lowercase; cased tokens are matched case-insensitively
        key = token if self.config.lowercase else token.lower()
        return key in self._stop_tokens

    def prepare(self, text: str) -> List[SentenceEntry]:
        entries: List[SentenceEntry] = []
        for sentence in self.split_sentences(text):
            tokens = self.tokenize(sentence)
            if len(tokens) < self.config.min_sentence_tokens:
                continue
            entries.append(SentenceEntry(index=len(entries), text=sentence, tokens=tokens))
        return entries
