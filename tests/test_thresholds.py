import pytest

from plagiarism_detection.errors import ValidationError
from plagiarism_detection.thresholds import ThresholdRegistry, ThresholdSettings


class TestThresholdSettings:
    def test_defaults(self):
        settings = ThresholdSettings()
        assert settings.values() == {
            "sentence_threshold": 50.0,
            "high_duplication_threshold": 30.0,
            "medium_duplication_threshold": 15.0,
            "document_comparison_threshold": 20.0,
        }

    @pytest.mark.parametrize(
        "overrides",
        [
            {"sentence_threshold": -1},
            {"high_duplication_threshold": 101},
            {"medium_duplication_threshold": 40, "high_duplication_threshold": 30},
            {"document_comparison_threshold": "high"},
            {"notes": "x" * 501},
        ],
    )
    def test_invalid_settings(self, overrides):
        with pytest.raises(ValidationError):
            ThresholdSettings(**overrides).validate()

    def test_dict_round_trip_keeps_timestamp(self):
        registry = ThresholdRegistry()
        settings = registry.update(updated_by="alice", sentence_threshold=60)
        assert ThresholdSettings.from_dict(settings.to_dict()) == settings


class TestThresholdRegistry:
    def test_starts_with_default_version(self):
        registry = ThresholdRegistry()
        current = registry.current()

        assert current.version == 1
        assert current.notes == "Default system thresholds"
        assert current.updated_at is not None

    def test_update_creates_new_version(self):
        registry = ThresholdRegistry()
        updated = registry.update(updated_by="alice", notes="stricter", sentence_threshold=70)

        assert updated.version == 2
        assert updated.sentence_threshold == 70
        assert updated.updated_by == "alice"
        assert [s.version for s in registry.history()] == [1, 2]

    def test_noop_update_keeps_version(self):
        registry = ThresholdRegistry()
        assert registry.update(updated_by="bob", sentence_threshold=50).version == 1

    def test_rejected_update_leaves_history_alone(self):
        registry = ThresholdRegistry()
        with pytest.raises(ValidationError):
            registry.update(updated_by="bob", medium_duplication_threshold=90)
        with pytest.raises(ValidationError):
            registry.update(updated_by="bob", bogus=1)
        assert len(registry.history()) == 1

    def test_history_is_restored(self):
        history = [ThresholdSettings(), ThresholdSettings(sentence_threshold=65, version=2)]
        registry = ThresholdRegistry(history)
        assert registry.current().sentence_threshold == 65
        assert registry.update(updated_by="c", sentence_threshold=66).version == 3
