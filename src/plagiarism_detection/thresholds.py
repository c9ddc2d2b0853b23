import logging
import threading
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import List, Optional

from .errors import ValidationError

_TUNABLE_FIELDS = (
    "sentence_threshold",
    "high_duplication_threshold",
    "medium_duplication_threshold",
    "document_comparison_threshold",
)


@dataclass(frozen=True)
class ThresholdSettings:
    sentence_threshold: float = 50.0
    high_duplication_threshold: float = 30.0
    medium_duplication_threshold: float = 15.0
    document_comparison_threshold: float = 20.0
    version: int = 1
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    notes: Optional[str] = None

    def validate(self) -> None:
        errors: List[str] = []
        for name in _TUNABLE_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                errors.append(f"{name} must be a number")
            elif not 0 <= value <= 100:
                errors.append(f"{name} must be within 0-100, got {value}")
        if not errors and self.medium_duplication_threshold > self.high_duplication_threshold:
            errors.append(
                "medium_duplication_threshold must not exceed high_duplication_threshold"
            )
        if self.notes is not None and len(self.notes) > 500:
            errors.append("notes must be at most 500 characters")
        if errors:
            raise ValidationError("; ".join(errors))

    def values(self) -> dict:
        return {name: getattr(self, name) for name in _TUNABLE_FIELDS}

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return payload

    @classmethod
    def from_dict(cls, payload: dict) -> "ThresholdSettings":
        data = dict(payload)
        if data.get("updated_at"):
            data["updated_at"] = datetime.fromisoformat(data["updated_at"])
        return cls(**data)


class ThresholdRegistry:
    """Versioned runtime thresholds.

    Every accepted change produces a new version stamped with the time and
    author; the full history is kept.
    """

    def __init__(self, history: Optional[List[ThresholdSettings]] = None) -> None:
        self._lock = threading.Lock()
        self._history: List[ThresholdSettings] = list(history or [])
        if not self._history:
            default = ThresholdSettings(
                updated_at=datetime.now(timezone.utc), notes="Default system thresholds"
            )
            self._history.append(default)
        for settings in self._history:
            settings.validate()

    def current(self) -> ThresholdSettings:
        with self._lock:
            return self._history[-1]

    def history(self) -> List[ThresholdSettings]:
        with self._lock:
            return list(self._history)

    def update(
        self, updated_by: Optional[str] = None, notes: Optional[str] = None, **values: float
    ) -> ThresholdSettings:
        unknown = set(values) - set(_TUNABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown threshold(s): {', '.join(sorted(unknown))}")
        with self._lock:
            current = self._history[-1]
            candidate = replace(current, **values)
            candidate.validate()
            if candidate.values() == current.values():
                logging.debug("Threshold update by %s changed nothing", updated_by)
                return current
            updated = replace(
                candidate,
                version=current.version + 1,
                updated_at=datetime.now(timezone.utc),
                updated_by=updated_by,
                notes=notes,
            )
            updated.validate()
            self._history.append(updated)
        logging.info(
            "Thresholds updated to version %d by %s: %s",
            updated.version,
            updated_by or "system",
            updated.values(),
        )
        return updated
