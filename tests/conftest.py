import pytest

from intake_engine.crisis import KeywordCrisisClassifier
from intake_engine.question_bank import QuestionBank
from intake_engine.storage import InMemoryBackend, SessionStore


@pytest.fixture(scope="session")
def bank():
    """Load the packaged question bank once for the entire test session."""
    b = QuestionBank()
    b.load()
    return b


@pytest.fixture(scope="session")
def classifier():
    return KeywordCrisisClassifier.from_yaml()


@pytest.fixture
def backend():
    """Fresh in-memory backend for each test."""
    return InMemoryBackend(record_writes=True)


@pytest.fixture
def store(backend):
    return SessionStore(backend)
