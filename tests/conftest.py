from typing import List

import pytest

from plagiarism_detection.models import DetectionConfig, Document
from plagiarism_detection.persistence import MemorySnapshotStore
from plagiarism_detection.preprocess import Stopwords
from plagiarism_detection.service import PlagiarismDetectionService


@pytest.fixture
def config() -> DetectionConfig:
    return DetectionConfig()


@pytest.fixture
def corpus() -> List[Document]:
    return [
        Document(
            doc_id="doc-1",
            title="Rivers",
            text=(
                "The river flows quietly through the green valley. "
                "Fishermen wait patiently on the muddy banks."
            ),
        ),
        Document(
            doc_id="doc-2",
            title="Mountains",
            text=(
                "Snow covers the mountain peaks every winter. "
                "Climbers carry ropes and heavy boots."
            ),
        ),
        Document(doc_id="doc-3", title=None, text="Tôi yêu em. Anh nhớ em nhiều lắm."),
    ]


@pytest.fixture
def store() -> MemorySnapshotStore:
    return MemorySnapshotStore()


@pytest.fixture
def service(corpus, config) -> PlagiarismDetectionService:
    return PlagiarismDetectionService(corpus, config=config, stopwords=Stopwords.empty())
