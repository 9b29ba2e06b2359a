"""
Centralized shared data types for the DigitalMe style-profile engine.

This module is THE single source of truth for the structures that flow
between the extractor, quality scorer, merge engine, confidence model and
refiner.

Hierarchy of types
------------------
- **Enums**: ``SourceType``, ``Tone``, ``Formality``, ``SentenceLength``,
  ``TransitionStyle``, ``PhraseCategory``, ``MarkerType``, ``AnomalyFlag``,
  ``BasicAttribute``
- **Input models**: ``SourceDocument``, ``StyleSample``
- **Style models**: ``BasicStyle``, ``SignaturePhrase``, ``ThoughtPatterns``,
  ``PersonalityMarker``, ``ContextualStyle``, ``AdvancedStyle``
- **Scoring models**: ``QualityAssessment``, ``WeightedSample``
- **Profile models**: ``SourceContribution``, ``SourceRecord``,
  ``SampleCount``, ``LearningMetadata``, ``StyleProfile``
- **Refinement models**: ``AttributeChange``, ``DeltaReport``
- **Result models**: ``OutcomeStatus``, ``ErrorInfo``, ``RefinementResult``,
  ``ProfileBuildResult``

Serialization
-------------
Every persisted structure exposes ``to_dict()`` producing JSON-compatible
data with camelCase keys, and a ``from_dict()`` classmethod that validates
shape, enum membership, numeric ranges and duplicate-free lists, raising
``ProfileSchemaError`` with the dotted path of the offending field.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from digitalme.exceptions import (
    InvariantViolationError,
    ProfileSchemaError,
    ValidationError,
)
from digitalme.utils import generate_id, parse_timestamp, utc_now

E = TypeVar("E", bound=Enum)

CONFIDENCE_CEILING = 0.95


# =============================================================================
# ENUMS
# =============================================================================


class SourceType(str, Enum):
    """
    Origin of a writing sample.

    Inherits from ``str`` so that ``SourceType.GMAIL == "gmail"`` and JSON
    serialization stays painless.
    """

    TEXT = "text"
    GMAIL = "gmail"
    GITHUB = "github"
    BLOG = "blog"
    CONVERSATION = "conversation"


class Tone(str, Enum):
    CONVERSATIONAL = "conversational"
    PROFESSIONAL = "professional"
    CASUAL = "casual"
    NEUTRAL = "neutral"


class Formality(str, Enum):
    CASUAL = "casual"
    BALANCED = "balanced"
    FORMAL = "formal"


class SentenceLength(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


class TransitionStyle(str, Enum):
    ABRUPT = "abrupt"
    SMOOTH = "smooth"
    MIXED = "mixed"


class PhraseCategory(str, Enum):
    SIGNATURE = "signature"
    TRANSITION = "transition"
    FILLER = "filler"


class MarkerType(str, Enum):
    SELF_AWARE = "self-aware"
    HUMOR = "humor"
    PERSONAL_CONTEXT = "personal-context"


class AnomalyFlag(str, Enum):
    """Flags raised by the quality scorer's anomaly checks."""

    SPAM = "spam"
    LOW_DIVERSITY = "lowDiversity"


class BasicAttribute(str, Enum):
    """
    Names of the basic writing-style attributes.

    Used as keys of ``attributeConfidence`` and ``sourceAttribution``.
    """

    TONE = "tone"
    FORMALITY = "formality"
    SENTENCE_LENGTH = "sentenceLength"
    VOCABULARY = "vocabulary"
    AVOIDANCE = "avoidance"


ENUM_ATTRIBUTES = (
    BasicAttribute.TONE,
    BasicAttribute.FORMALITY,
    BasicAttribute.SENTENCE_LENGTH,
)
SET_ATTRIBUTES = (BasicAttribute.VOCABULARY, BasicAttribute.AVOIDANCE)

ATTRIBUTE_ENUM_TYPES: Dict[BasicAttribute, Type[Enum]] = {
    BasicAttribute.TONE: Tone,
    BasicAttribute.FORMALITY: Formality,
    BasicAttribute.SENTENCE_LENGTH: SentenceLength,
}

_ATTRIBUTE_FIELDS: Dict[BasicAttribute, str] = {
    BasicAttribute.TONE: "tone",
    BasicAttribute.FORMALITY: "formality",
    BasicAttribute.SENTENCE_LENGTH: "sentence_length",
    BasicAttribute.VOCABULARY: "vocabulary",
    BasicAttribute.AVOIDANCE: "avoidance",
}


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def _mapping(value: Any, path: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ProfileSchemaError(path, f"expected object, got {type(value).__name__}")
    return value


def _required(data: Dict[str, Any], key: str, path: str) -> Any:
    if key not in data:
        raise ProfileSchemaError(f"{path}.{key}", "missing required field")
    return data[key]


def _no_extra_keys(data: Dict[str, Any], allowed: set, path: str) -> None:
    extra = set(data) - allowed
    if extra:
        raise ProfileSchemaError(path, f"unexpected fields {sorted(extra)}")


def _enum(enum_cls: Type[E], value: Any, path: str) -> E:
    try:
        return enum_cls(value)
    except ValueError:
        valid = [member.value for member in enum_cls]
        raise ProfileSchemaError(path, f"'{value}' is not one of {valid}") from None


def _number(
    value: Any,
    path: str,
    minimum: Optional[float] = None,
    maximum: Optional[float] = None,
) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProfileSchemaError(path, f"expected number, got {type(value).__name__}")
    if not math.isfinite(value):
        raise ProfileSchemaError(path, "number must be finite")
    if minimum is not None and value < minimum:
        raise ProfileSchemaError(path, f"{value} is below {minimum}")
    if maximum is not None and value > maximum:
        raise ProfileSchemaError(path, f"{value} is above {maximum}")
    return float(value)


def _integer(value: Any, path: str, minimum: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProfileSchemaError(path, f"expected integer, got {type(value).__name__}")
    if value < minimum:
        raise ProfileSchemaError(path, f"{value} is below {minimum}")
    return value


def _string(value: Any, path: str) -> str:
    if not isinstance(value, str):
        raise ProfileSchemaError(path, f"expected string, got {type(value).__name__}")
    return value


def _string_list(value: Any, path: str) -> List[str]:
    if not isinstance(value, list):
        raise ProfileSchemaError(path, f"expected array, got {type(value).__name__}")
    items = [_string(item, f"{path}[{i}]") for i, item in enumerate(value)]
    if len(set(items)) != len(items):
        raise ProfileSchemaError(path, "array contains duplicate entries")
    return items


def _timestamp(value: Any, path: str) -> datetime:
    try:
        return parse_timestamp(_string(value, path))
    except ValueError as exc:
        raise ProfileSchemaError(path, f"invalid timestamp: {exc}") from exc


def normalize_terms(terms: List[str]) -> List[str]:
    """Lower-case, strip and deduplicate terms, preserving first occurrence."""
    seen: Dict[str, None] = {}
    for term in terms:
        key = " ".join(str(term).lower().split())
        if key and key not in seen:
            seen[key] = None
    return list(seen)


# =============================================================================
# INPUT MODELS
# =============================================================================


@dataclass
class SourceDocument:
    """
    Raw output of a source adapter (pasted text, Gmail, blog, GitHub).

    Attributes:
        source_type: Where the text came from.
        raw_text: The collected text.
        word_count: Word count reported by the adapter.
        metadata: Adapter-specific details (URLs, message counts, ...).
        source_id: Stable identifier of this source within a profile.
    """

    source_type: SourceType
    raw_text: str
    word_count: int
    metadata: Dict[str, Any] = field(default_factory=dict)
    source_id: str = field(default_factory=generate_id)

    def __post_init__(self) -> None:
        if self.word_count < 0:
            raise ValidationError(
                f"word_count must be >= 0, got {self.word_count} for source {self.source_id}"
            )


# =============================================================================
# STYLE MODELS
# =============================================================================


@dataclass
class BasicStyle:
    """Basic writing-style attributes of a sample or a merged profile."""

    tone: Tone
    formality: Formality
    sentence_length: SentenceLength
    vocabulary: List[str] = field(default_factory=list)
    avoidance: List[str] = field(default_factory=list)

    def get(self, attribute: BasicAttribute) -> Any:
        return getattr(self, _ATTRIBUTE_FIELDS[attribute])

    def set(self, attribute: BasicAttribute, value: Any) -> None:
        setattr(self, _ATTRIBUTE_FIELDS[attribute], value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tone": self.tone.value,
            "formality": self.formality.value,
            "sentenceLength": self.sentence_length.value,
            "vocabulary": list(self.vocabulary),
            "avoidance": list(self.avoidance),
        }

    @classmethod
    def from_dict(cls, data: Any, path: str = "basic") -> "BasicStyle":
        data = _mapping(data, path)
        _no_extra_keys(
            data, {"tone", "formality", "sentenceLength", "vocabulary", "avoidance"}, path
        )
        return cls(
            tone=_enum(Tone, _required(data, "tone", path), f"{path}.tone"),
            formality=_enum(
                Formality, _required(data, "formality", path), f"{path}.formality"
            ),
            sentence_length=_enum(
                SentenceLength,
                _required(data, "sentenceLength", path),
                f"{path}.sentenceLength",
            ),
            vocabulary=_string_list(data.get("vocabulary", []), f"{path}.vocabulary"),
            avoidance=_string_list(data.get("avoidance", []), f"{path}.avoidance"),
        )


@dataclass
class SignaturePhrase:
    phrase: str
    frequency: int
    category: PhraseCategory = PhraseCategory.SIGNATURE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phrase": self.phrase,
            "frequency": self.frequency,
            "category": self.category.value,
        }

    @classmethod
    def from_dict(cls, data: Any, path: str) -> "SignaturePhrase":
        data = _mapping(data, path)
        return cls(
            phrase=_string(_required(data, "phrase", path), f"{path}.phrase"),
            frequency=_integer(_required(data, "frequency", path), f"{path}.frequency"),
            category=_enum(
                PhraseCategory, data.get("category", "signature"), f"{path}.category"
            ),
        )


@dataclass
class ThoughtPatterns:
    """
    How the writer organizes thoughts.

    Attributes:
        flow_score: 0 (structured) to 100 (stream-of-consciousness).
        transition_style: How ideas are connected.
        parenthetical_frequency: Parenthetical asides per 1000 words.
    """

    flow_score: float
    transition_style: TransitionStyle
    parenthetical_frequency: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flowScore": self.flow_score,
            "transitionStyle": self.transition_style.value,
            "parentheticalFrequency": self.parenthetical_frequency,
        }

    @classmethod
    def from_dict(cls, data: Any, path: str) -> "ThoughtPatterns":
        data = _mapping(data, path)
        return cls(
            flow_score=_number(
                _required(data, "flowScore", path), f"{path}.flowScore", 0.0, 100.0
            ),
            transition_style=_enum(
                TransitionStyle,
                _required(data, "transitionStyle", path),
                f"{path}.transitionStyle",
            ),
            parenthetical_frequency=_number(
                _required(data, "parentheticalFrequency", path),
                f"{path}.parentheticalFrequency",
                0.0,
            ),
        )


@dataclass
class PersonalityMarker:
    text: str
    type: MarkerType
    context: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "type": self.type.value, "context": self.context}

    @classmethod
    def from_dict(cls, data: Any, path: str) -> "PersonalityMarker":
        data = _mapping(data, path)
        return cls(
            text=_string(_required(data, "text", path), f"{path}.text"),
            type=_enum(MarkerType, _required(data, "type", path), f"{path}.type"),
            context=_string(data.get("context", ""), f"{path}.context"),
        )


@dataclass
class ContextualStyle:
    vocabulary: List[str] = field(default_factory=list)
    tone: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"vocabulary": list(self.vocabulary), "tone": self.tone}

    @classmethod
    def from_dict(cls, data: Any, path: str) -> "ContextualStyle":
        data = _mapping(data, path)
        return cls(
            vocabulary=_string_list(data.get("vocabulary", []), f"{path}.vocabulary"),
            tone=_string(data.get("tone", ""), f"{path}.tone"),
        )


@dataclass
class AdvancedStyle:
    """
    Optional deep-analysis attributes.

    A profile or sample without advanced analysis carries ``None`` instead
    of an empty ``AdvancedStyle``, so "not analyzed" stays distinguishable
    from "analyzed but found nothing".
    """

    signature_phrases: List[SignaturePhrase] = field(default_factory=list)
    thought_patterns: Optional[ThoughtPatterns] = None
    personality_markers: List[PersonalityMarker] = field(default_factory=list)
    contextual_vocabulary: Dict[str, ContextualStyle] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signaturePhrases": [p.to_dict() for p in self.signature_phrases],
            "thoughtPatterns": (
                self.thought_patterns.to_dict() if self.thought_patterns else None
            ),
            "personalityMarkers": [m.to_dict() for m in self.personality_markers],
            "contextualVocabulary": {
                name: ctx.to_dict() for name, ctx in self.contextual_vocabulary.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Any, path: str = "advanced") -> "AdvancedStyle":
        data = _mapping(data, path)
        phrases = data.get("signaturePhrases", [])
        markers = data.get("personalityMarkers", [])
        contexts = _mapping(data.get("contextualVocabulary", {}), f"{path}.contextualVocabulary")
        if not isinstance(phrases, list):
            raise ProfileSchemaError(f"{path}.signaturePhrases", "expected array")
        if not isinstance(markers, list):
            raise ProfileSchemaError(f"{path}.personalityMarkers", "expected array")
        thought = data.get("thoughtPatterns")
        return cls(
            signature_phrases=[
                SignaturePhrase.from_dict(p, f"{path}.signaturePhrases[{i}]")
                for i, p in enumerate(phrases)
            ],
            thought_patterns=(
                ThoughtPatterns.from_dict(thought, f"{path}.thoughtPatterns")
                if thought is not None
                else None
            ),
            personality_markers=[
                PersonalityMarker.from_dict(m, f"{path}.personalityMarkers[{i}]")
                for i, m in enumerate(markers)
            ],
            contextual_vocabulary={
                name: ContextualStyle.from_dict(ctx, f"{path}.contextualVocabulary.{name}")
                for name, ctx in contexts.items()
            },
        )


@dataclass
class StyleSample:
    """
    One source's extracted writing-style snapshot.

    Ephemeral: created by the style extractor, consumed once by the merge
    engine or refiner. ``text`` keeps the raw text for the quality
    scorer's anomaly checks and is never copied into a profile.
    """

    source_type: SourceType
    word_count: int
    basic: BasicStyle
    advanced: Optional[AdvancedStyle] = None
    source_id: str = field(default_factory=generate_id)
    text: str = ""

    def __post_init__(self) -> None:
        if self.word_count < 0:
            raise ValidationError(
                f"StyleSample.word_count must be >= 0, got {self.word_count}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceId": self.source_id,
            "sourceType": self.source_type.value,
            "wordCount": self.word_count,
            "basic": self.basic.to_dict(),
            "advanced": self.advanced.to_dict() if self.advanced else None,
            "text": self.text,
        }

    @classmethod
    def from_dict(cls, data: Any, path: str = "sample") -> "StyleSample":
        data = _mapping(data, path)
        advanced = data.get("advanced")
        return cls(
            source_type=_enum(
                SourceType, _required(data, "sourceType", path), f"{path}.sourceType"
            ),
            word_count=_integer(_required(data, "wordCount", path), f"{path}.wordCount"),
            basic=BasicStyle.from_dict(_required(data, "basic", path), f"{path}.basic"),
            advanced=(
                AdvancedStyle.from_dict(advanced, f"{path}.advanced")
                if advanced is not None
                else None
            ),
            source_id=_string(data.get("sourceId") or generate_id(), f"{path}.sourceId"),
            text=_string(data.get("text", ""), f"{path}.text"),
        )


# =============================================================================
# SCORING MODELS
# =============================================================================


@dataclass
class QualityAssessment:
    """
    Result of scoring one sample.

    ``quality_weight = prior * quantity_multiplier * penalty`` and always
    lies in ``[0, 1.5]``.
    """

    quality_weight: float
    prior: float
    quantity_multiplier: float
    penalty: float = 1.0
    anomaly_flags: List[AnomalyFlag] = field(default_factory=list)
    duplicate_ratio: float = 0.0
    diversity_ratio: Optional[float] = None

    @property
    def is_spam(self) -> bool:
        return AnomalyFlag.SPAM in self.anomaly_flags

    @property
    def is_low_diversity(self) -> bool:
        return AnomalyFlag.LOW_DIVERSITY in self.anomaly_flags


@dataclass
class WeightedSample:
    """A sample paired with its quality assessment, as fed to the merge."""

    sample: StyleSample
    assessment: QualityAssessment

    @property
    def weight(self) -> float:
        return self.assessment.quality_weight


# =============================================================================
# PROFILE MODELS
# =============================================================================


@dataclass
class SourceContribution:
    source_type: SourceType
    contribution_percent: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceType": self.source_type.value,
            "contributionPercent": self.contribution_percent,
        }

    @classmethod
    def from_dict(cls, data: Any, path: str) -> "SourceContribution":
        data = _mapping(data, path)
        percent = _integer(
            _required(data, "contributionPercent", path), f"{path}.contributionPercent"
        )
        if percent > 100:
            raise ProfileSchemaError(f"{path}.contributionPercent", f"{percent} is above 100")
        return cls(
            source_type=_enum(
                SourceType, _required(data, "sourceType", path), f"{path}.sourceType"
            ),
            contribution_percent=percent,
        )


@dataclass
class SourceRecord:
    """
    Summary of one source merged into a profile.

    Kept on the profile so confidence can be recomputed after refinement
    without the raw samples.
    """

    source_id: str
    source_type: SourceType
    word_count: int
    quality_weight: float
    anomaly_flags: List[AnomalyFlag] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceId": self.source_id,
            "sourceType": self.source_type.value,
            "wordCount": self.word_count,
            "qualityWeight": self.quality_weight,
            "anomalyFlags": [flag.value for flag in self.anomaly_flags],
        }

    @classmethod
    def from_dict(cls, data: Any, path: str) -> "SourceRecord":
        data = _mapping(data, path)
        flags = _string_list(data.get("anomalyFlags", []), f"{path}.anomalyFlags")
        return cls(
            source_id=_string(_required(data, "sourceId", path), f"{path}.sourceId"),
            source_type=_enum(
                SourceType, _required(data, "sourceType", path), f"{path}.sourceType"
            ),
            word_count=_integer(_required(data, "wordCount", path), f"{path}.wordCount"),
            quality_weight=_number(
                _required(data, "qualityWeight", path), f"{path}.qualityWeight", 0.0, 1.5
            ),
            anomaly_flags=[
                _enum(AnomalyFlag, flag, f"{path}.anomalyFlags[{i}]")
                for i, flag in enumerate(flags)
            ],
        )


@dataclass
class SampleCount:
    per_source_word_counts: Dict[SourceType, int] = field(default_factory=dict)
    conversation_words: int = 0

    @property
    def source_words(self) -> int:
        return sum(self.per_source_word_counts.values())

    @property
    def total_words(self) -> int:
        return self.source_words + self.conversation_words

    def to_dict(self) -> Dict[str, Any]:
        return {
            "perSourceWordCounts": {
                source.value: count for source, count in self.per_source_word_counts.items()
            },
            "conversationWords": self.conversation_words,
        }

    @classmethod
    def from_dict(cls, data: Any, path: str = "sampleCount") -> "SampleCount":
        data = _mapping(data, path)
        counts = _mapping(data.get("perSourceWordCounts", {}), f"{path}.perSourceWordCounts")
        return cls(
            per_source_word_counts={
                _enum(SourceType, key, f"{path}.perSourceWordCounts.{key}"): _integer(
                    value, f"{path}.perSourceWordCounts.{key}"
                )
                for key, value in counts.items()
            },
            conversation_words=_integer(
                data.get("conversationWords", 0), f"{path}.conversationWords"
            ),
        )


@dataclass
class LearningMetadata:
    enabled: bool = True
    last_refinement_at: Optional[datetime] = None
    total_refinements: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "lastRefinementAt": (
                self.last_refinement_at.isoformat() if self.last_refinement_at else None
            ),
            "totalRefinements": self.total_refinements,
        }

    @classmethod
    def from_dict(cls, data: Any, path: str = "learningMetadata") -> "LearningMetadata":
        data = _mapping(data, path)
        enabled = data.get("enabled", True)
        if not isinstance(enabled, bool):
            raise ProfileSchemaError(f"{path}.enabled", "expected boolean")
        last = data.get("lastRefinementAt")
        return cls(
            enabled=enabled,
            last_refinement_at=(
                _timestamp(last, f"{path}.lastRefinementAt") if last is not None else None
            ),
            total_refinements=_integer(
                data.get("totalRefinements", 0), f"{path}.totalRefinements"
            ),
        )


@dataclass
class StyleProfile:
    """
    Durable aggregate describing how a user writes.

    Created by the first successful merge, then mutated by source
    additions/removals (full re-merge) and refinement batches
    (incremental update). ``version`` increases by one on every mutation
    and backs optimistic concurrency checks in ``ProfileStore``.

    Attributes:
        profile_id: Stable profile identity.
        user_id: Owner of the profile.
        version: Mutation counter.
        basic: Resolved basic attributes.
        advanced: Merged advanced attributes, ``None`` when never analyzed.
        confidence: Overall confidence in ``[0, 0.95]``.
        attribute_confidence: Per basic attribute confidence, each ``<= 0.95``.
        sample_count: Word totals by source type plus conversation words.
        source_attribution: Per attribute contributions, summing to 100.
        sources: Summary of every merged source.
        learning_metadata: Refinement switch and counters.
    """

    basic: BasicStyle
    confidence: float
    attribute_confidence: Dict[BasicAttribute, float]
    sample_count: SampleCount
    source_attribution: Dict[BasicAttribute, List[SourceContribution]]
    sources: List[SourceRecord] = field(default_factory=list)
    advanced: Optional[AdvancedStyle] = None
    learning_metadata: LearningMetadata = field(default_factory=LearningMetadata)
    profile_id: str = field(default_factory=generate_id)
    user_id: str = ""
    version: int = 1
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.profile_id,
            "userId": self.user_id,
            "version": self.version,
            "basic": self.basic.to_dict(),
            "advanced": self.advanced.to_dict() if self.advanced else None,
            "confidence": self.confidence,
            "attributeConfidence": {
                attr.value: value for attr, value in self.attribute_confidence.items()
            },
            "sampleCount": self.sample_count.to_dict(),
            "sourceAttribution": {
                attr.value: [c.to_dict() for c in contributions]
                for attr, contributions in self.source_attribution.items()
            },
            "sources": [record.to_dict() for record in self.sources],
            "learningMetadata": self.learning_metadata.to_dict(),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Any) -> "StyleProfile":
        """
        Rebuild a profile from ``to_dict()`` output.

        Raises:
            ProfileSchemaError: If the data has the wrong shape or values,
                or the loaded profile fails ``validate()``.
        """
        path = "profile"
        data = _mapping(data, path)
        _no_extra_keys(
            data,
            {
                "id", "userId", "version", "basic", "advanced", "confidence",
                "attributeConfidence", "sampleCount", "sourceAttribution",
                "sources", "learningMetadata", "createdAt", "updatedAt",
            },
            path,
        )

        attr_conf_raw = _mapping(
            _required(data, "attributeConfidence", path), f"{path}.attributeConfidence"
        )
        attribution_raw = _mapping(
            _required(data, "sourceAttribution", path), f"{path}.sourceAttribution"
        )
        sources_raw = data.get("sources", [])
        if not isinstance(sources_raw, list):
            raise ProfileSchemaError(f"{path}.sources", "expected array")

        attribution: Dict[BasicAttribute, List[SourceContribution]] = {}
        for key, contributions in attribution_raw.items():
            attr_path = f"{path}.sourceAttribution.{key}"
            attr = _enum(BasicAttribute, key, attr_path)
            if not isinstance(contributions, list):
                raise ProfileSchemaError(attr_path, "expected array")
            attribution[attr] = [
                SourceContribution.from_dict(c, f"{attr_path}[{i}]")
                for i, c in enumerate(contributions)
            ]

        advanced = data.get("advanced")
        profile = cls(
            profile_id=_string(_required(data, "id", path), f"{path}.id"),
            user_id=_string(data.get("userId", ""), f"{path}.userId"),
            version=_integer(data.get("version", 1), f"{path}.version", minimum=1),
            basic=BasicStyle.from_dict(_required(data, "basic", path), f"{path}.basic"),
            advanced=(
                AdvancedStyle.from_dict(advanced, f"{path}.advanced")
                if advanced is not None
                else None
            ),
            confidence=_number(
                _required(data, "confidence", path),
                f"{path}.confidence",
                0.0,
                CONFIDENCE_CEILING,
            ),
            attribute_confidence={
                _enum(BasicAttribute, key, f"{path}.attributeConfidence.{key}"): _number(
                    value, f"{path}.attributeConfidence.{key}", 0.0, CONFIDENCE_CEILING
                )
                for key, value in attr_conf_raw.items()
            },
            sample_count=SampleCount.from_dict(
                _required(data, "sampleCount", path), f"{path}.sampleCount"
            ),
            source_attribution=attribution,
            sources=[
                SourceRecord.from_dict(record, f"{path}.sources[{i}]")
                for i, record in enumerate(sources_raw)
            ],
            learning_metadata=LearningMetadata.from_dict(
                data.get("learningMetadata", {}), f"{path}.learningMetadata"
            ),
            created_at=_timestamp(_required(data, "createdAt", path), f"{path}.createdAt"),
            updated_at=_timestamp(_required(data, "updatedAt", path), f"{path}.updatedAt"),
        )
        try:
            profile.validate()
        except InvariantViolationError as exc:
            raise ProfileSchemaError(path, str(exc)) from exc
        return profile

    @classmethod
    def from_json(cls, text: str) -> "StyleProfile":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ProfileSchemaError("profile", f"invalid JSON: {exc}") from exc
        return cls.from_dict(data)

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------

    def validate(self, max_set_terms: int = 10) -> None:
        """
        Check structural invariants of the profile.

        Raises:
            InvariantViolationError: On the first violated invariant.
        """
        if not 0.0 <= self.confidence <= CONFIDENCE_CEILING:
            raise InvariantViolationError(
                f"confidence {self.confidence} outside [0, {CONFIDENCE_CEILING}]"
            )
        for attr, value in self.attribute_confidence.items():
            if not 0.0 <= value <= CONFIDENCE_CEILING:
                raise InvariantViolationError(
                    f"attributeConfidence.{attr.value}={value} outside [0, {CONFIDENCE_CEILING}]"
                )
        for attr in SET_ATTRIBUTES:
            terms = self.basic.get(attr)
            if len(terms) > max_set_terms:
                raise InvariantViolationError(
                    f"{attr.value} holds {len(terms)} terms, cap is {max_set_terms}"
                )
            if len(set(terms)) != len(terms):
                raise InvariantViolationError(f"{attr.value} contains duplicates")

        present_types = {record.source_type for record in self.sources}
        for attr, contributions in self.source_attribution.items():
            if not contributions:
                continue
            total = sum(c.contribution_percent for c in contributions)
            if abs(total - 100) > 1:
                raise InvariantViolationError(
                    f"sourceAttribution.{attr.value} sums to {total}, expected 100"
                )
            for contribution in contributions:
                if contribution.source_type not in present_types:
                    raise InvariantViolationError(
                        f"sourceAttribution.{attr.value} references missing source "
                        f"type '{contribution.source_type.value}'"
                    )


# =============================================================================
# REFINEMENT MODELS
# =============================================================================


@dataclass
class AttributeChange:
    attribute: BasicAttribute
    old_value: Any
    new_value: Any
    change_percent: int

    def to_dict(self) -> Dict[str, Any]:
        def _plain(value: Any) -> Any:
            if isinstance(value, Enum):
                return value.value
            if isinstance(value, list):
                return list(value)
            return value

        return {
            "attribute": self.attribute.value,
            "oldValue": _plain(self.old_value),
            "newValue": _plain(self.new_value),
            "changePercent": self.change_percent,
        }


@dataclass
class DeltaReport:
    """What a refinement batch changed."""

    changes: List[AttributeChange] = field(default_factory=list)
    words_analyzed: int = 0
    confidence_change: float = 0.0
    attribute_confidence_changes: Dict[BasicAttribute, float] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def is_empty(self) -> bool:
        return not self.changes and self.words_analyzed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "changes": [change.to_dict() for change in self.changes],
            "wordsAnalyzed": self.words_analyzed,
            "confidenceChange": self.confidence_change,
            "attributeConfidenceChanges": {
                attr.value: delta for attr, delta in self.attribute_confidence_changes.items()
            },
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# RESULT MODELS
# Expected engine conditions are returned as values, never raised.
# =============================================================================


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    NO_OP = "no_op"
    FAILED = "failed"


INSUFFICIENT_SIGNAL = "insufficient_signal"


@dataclass
class ErrorInfo:
    """
    Serializable description of a failed operation.

    Attributes:
        code: Stable identifier (``validation_error``,
            ``insufficient_quality_data``, ``extraction_failure``, ...).
        message: Human-readable explanation.
        retryable: ``True`` when trying again later may succeed.
        issues: Individual validation issues, when there are several.
    """

    code: str
    message: str
    retryable: bool = False
    issues: List[str] = field(default_factory=list)

    @classmethod
    def from_exception(cls, exc: Exception) -> "ErrorInfo":
        return cls(
            code=getattr(exc, "code", type(exc).__name__),
            message=str(exc),
            retryable=bool(getattr(exc, "retryable", False)),
            issues=list(getattr(exc, "issues", [])),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "issues": list(self.issues),
        }


@dataclass
class RefinementResult:
    """
    Outcome of one refinement batch.

    ``profile`` is always present: the updated profile on success, the
    untouched input profile on a no-op or failure.
    """

    status: OutcomeStatus
    profile: StyleProfile
    delta: DeltaReport
    error: Optional[ErrorInfo] = None
    reason: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "reason": self.reason,
            "error": self.error.to_dict() if self.error else None,
            "delta": self.delta.to_dict(),
            "profile": self.profile.to_dict(),
        }


@dataclass
class ProfileBuildResult:
    """Outcome of building or re-merging a profile."""

    status: OutcomeStatus
    profile: Optional[StyleProfile] = None
    error: Optional[ErrorInfo] = None
    assessments: Dict[str, QualityAssessment] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Results
    "OutcomeStatus",
    "INSUFFICIENT_SIGNAL",
    "ErrorInfo",
    "RefinementResult",
    "ProfileBuildResult",
    # Enums
    "SourceType",
    "Tone",
    "Formality",
    "SentenceLength",
    "TransitionStyle",
    "PhraseCategory",
    "MarkerType",
    "AnomalyFlag",
    "BasicAttribute",
    "ENUM_ATTRIBUTES",
    "SET_ATTRIBUTES",
    "ATTRIBUTE_ENUM_TYPES",
    "CONFIDENCE_CEILING",
    # Input
    "SourceDocument",
    "StyleSample",
    # Style
    "BasicStyle",
    "SignaturePhrase",
    "ThoughtPatterns",
    "PersonalityMarker",
    "ContextualStyle",
    "AdvancedStyle",
    # Scoring
    "QualityAssessment",
    "WeightedSample",
    # Profile
    "SourceContribution",
    "SourceRecord",
    "SampleCount",
    "LearningMetadata",
    "StyleProfile",
    # Refinement
    "AttributeChange",
    "DeltaReport",
    # Helpers
    "normalize_terms",
]
