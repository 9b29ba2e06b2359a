"""Shared fixtures for the DigitalMe style engine test suite."""

import copy
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from digitalme.config import reset_settings
from digitalme.models import (
    BasicStyle,
    Formality,
    SentenceLength,
    SourceType,
    StyleSample,
    Tone,
)
from digitalme.style.text_preprocessor import count_words
from digitalme.utils import generate_id


# ---------------------------------------------------------------------------
# Ensure we don't hit real APIs during tests
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _block_env_keys(monkeypatch):
    """Clear API keys and engine overrides so tests run against defaults."""
    keys = [
        "ANTHROPIC_API_KEY",
        "DM_LLM_MODEL",
        "DM_LOG_LEVEL",
        "DM_LOG_DIR",
        "DM_PROFILE_TTL_SECONDS",
        "DM_SPAM_DUPLICATE_RATIO",
        "DM_DIVERSITY_FLOOR",
        "DM_ENUM_SWITCH_RATIO",
    ]
    for key in keys:
        monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


# ---------------------------------------------------------------------------
# Common datetime fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def sample_utc_now():
    """A fixed UTC datetime for deterministic tests."""
    return datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Text builders
# ---------------------------------------------------------------------------
def _clean_text(words: int, prefix: str = "word") -> str:
    """``words`` distinct tokens, ten per sentence: no spam, full diversity."""
    tokens = [f"{prefix}{i}" for i in range(words)]
    sentences = [" ".join(tokens[i:i + 10]) + "." for i in range(0, words, 10)]
    return " ".join(sentences)


def _duplicated_text(sentences: int, duplicate_fraction: float, prefix: str = "word") -> str:
    """Ten-word sentences where ``duplicate_fraction`` of them repeat earlier ones."""
    duplicates = int(round(sentences * duplicate_fraction))
    unique = [
        " ".join(f"{prefix}{s}x{w}" for w in range(10)) + "."
        for s in range(sentences - duplicates)
    ]
    return " ".join(unique + unique[:duplicates])


def _repetitive_text(sentences: int) -> str:
    """Distinct sentences drawn from a four-word vocabulary."""
    return " ".join(f"alpha beta gamma delta {i}." for i in range(sentences))


@pytest.fixture
def clean_text():
    return _clean_text


@pytest.fixture
def duplicated_text():
    return _duplicated_text


@pytest.fixture
def repetitive_text():
    return _repetitive_text


# ---------------------------------------------------------------------------
# Sample builders
# ---------------------------------------------------------------------------
def _make_basic(
    tone: Tone = Tone.CONVERSATIONAL,
    formality: Formality = Formality.BALANCED,
    sentence_length: SentenceLength = SentenceLength.MEDIUM,
    vocabulary: Optional[List[str]] = None,
    avoidance: Optional[List[str]] = None,
) -> BasicStyle:
    return BasicStyle(
        tone=tone,
        formality=formality,
        sentence_length=sentence_length,
        vocabulary=list(vocabulary or []),
        avoidance=list(avoidance or []),
    )


def _make_sample(
    source_type: SourceType = SourceType.TEXT,
    words: int = 600,
    text: Optional[str] = None,
    source_id: Optional[str] = None,
    advanced=None,
    **basic_kwargs,
) -> StyleSample:
    if text is None:
        text = _clean_text(words, prefix=f"{source_type.value}w") if words else ""
    return StyleSample(
        source_type=source_type,
        word_count=words,
        basic=_make_basic(**basic_kwargs),
        advanced=advanced,
        source_id=source_id or generate_id(),
        text=text,
    )


@pytest.fixture
def make_basic():
    return _make_basic


@pytest.fixture
def make_sample():
    return _make_sample


# ---------------------------------------------------------------------------
# Fake style extractor
# ---------------------------------------------------------------------------
class FakeExtractor:
    """In-memory stand-in for ``ClaudeStyleExtractor``.

    Returns ``basic`` (or the per-source-type override) for every call and
    records the calls. Set ``error`` to make every call raise it.
    """

    def __init__(
        self,
        basic: Optional[BasicStyle] = None,
        by_source_type: Optional[Dict[SourceType, BasicStyle]] = None,
        advanced=None,
        error: Optional[Exception] = None,
    ) -> None:
        self.basic = basic or _make_basic()
        self.by_source_type = by_source_type or {}
        self.advanced = advanced
        self.error = error
        self.calls: List[Dict] = []

    async def extract(self, text, source_type, *, source_id=None, include_advanced=False):
        self.calls.append(
            {
                "text": text,
                "source_type": source_type,
                "source_id": source_id,
                "include_advanced": include_advanced,
            }
        )
        if self.error is not None:
            raise self.error
        basic = self.by_source_type.get(source_type, self.basic)
        return StyleSample(
            source_type=source_type,
            word_count=count_words(text),
            basic=copy.deepcopy(basic),
            advanced=copy.deepcopy(self.advanced) if include_advanced else None,
            source_id=source_id or generate_id(),
            text=text,
        )


@pytest.fixture
def fake_extractor():
    return FakeExtractor()


@pytest.fixture
def fake_extractor_cls():
    return FakeExtractor
