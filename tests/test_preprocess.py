from plagiarism_detection.models import DetectionConfig
from plagiarism_detection.preprocess import Preprocessor, Stopwords


class TestStopwords:
    def test_version_depends_only_on_the_word_set(self):
        first = Stopwords.from_words(["Và", "là", "và"])
        second = Stopwords.from_words(["là", "và"])

        assert first.version == second.version
        assert len(first) == 2
        assert "và" in first

    def test_different_lists_have_different_versions(self):
        assert Stopwords.from_words(["a"]).version != Stopwords.from_words(["b"]).version


class TestPreprocessor:
    def test_tokens_are_lowercase_nfc_without_digits(self):
        pre = Preprocessor(DetectionConfig())
        decomposed = "To\u0302i"
        tokens = pre.tokenize(f"{decomposed} có 3 con MÈO_2024, 42 lần!")

        assert tokens == ["tôi", "có", "con", "mèo", "lần"]

    def test_accents_are_kept_by_default_and_stripped_on_request(self):
        kept = Preprocessor(DetectionConfig()).tokenize("Đường phố Hà Nội")
        stripped = Preprocessor(DetectionConfig(strip_accents=True)).tokenize("Đường phố Hà Nội")

        assert kept == ["đường", "phố", "hà", "nội"]
        assert stripped == ["duong", "pho", "ha", "noi"]

    def test_stopwords_are_removed(self):
        pre = Preprocessor(DetectionConfig(), Stopwords.from_words(["the", "and"]))
        assert pre.tokenize("The cat and the dog") == ["cat", "dog"]

    def test_accented_stopwords_match_when_accents_are_stripped(self):
        pre = Preprocessor(DetectionConfig(strip_accents=True), Stopwords.from_words(["và"]))
        assert pre.tokenize("mèo và chó") == ["meo", "cho"]

    def test_split_sentences_on_terminators_and_newlines(self):
        pre = Preprocessor(DetectionConfig())
        text = "First one here.  Second one?!\nThird line\n\nFourth… done"

        assert pre.split_sentences(text) == [
            "First one here",
            "Second one",
            "Third line",
            "Fourth",
            "done",
        ]

    def test_prepare_drops_short_sentences_and_reindexes(self):
        pre = Preprocessor(DetectionConfig(min_sentence_tokens=3))
        entries = pre.prepare("Hello. The quick brown fox. Hi there. Lazy dogs sleep all day.")

        assert [e.index for e in entries] == [0, 1]
        assert entries[0].tokens == ["the", "quick", "brown", "fox"]
        assert entries[1].text == "Lazy dogs sleep all day"

    def test_prepare_is_deterministic(self):
        pre = Preprocessor(DetectionConfig())
        text = "Một câu tiếng Việt có dấu. Another sentence in English here."
        assert pre.prepare(text) == pre.prepare(text)

    def test_normalize_collapses_whitespace(self):
        pre = Preprocessor(DetectionConfig())
        assert pre.normalize("  Hello \n\t World  ") == "hello world"

    def test_stopwords_match_cased_tokens_when_case_is_kept(self):
        pre = Preprocessor(DetectionConfig(lowercase=False), Stopwords.from_words(["the", "and"]))
        assert pre.tokenize("The Cat AND the Dog") == ["Cat", "Dog"]
