"""
Confidence Model.

Derives the overall profile confidence from the total word count, source
diversity and the anomaly flags raised by the quality scorer:

    confidence = clamp(base(words) + bonuses - penalties, 0.0, 0.95)

``base`` interpolates linearly inside fixed word-count bands, so it is
continuous and non-decreasing in the word count. The 0.95 ceiling is a
hard invariant: the engine never claims perfect style replication.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from digitalme.config import ConfidenceConfig
from digitalme.models import (
    AnomalyFlag,
    BasicAttribute,
    SourceRecord,
    StyleProfile,
    WeightedSample,
)
from digitalme.utils import round_half_up


@dataclass
class ConfidenceInputs:
    """Everything the confidence curve depends on."""

    total_words: int
    distinct_source_types: int
    distinct_sources: int
    has_advanced: bool = False
    spam_weight_fraction: float = 0.0
    low_diversity_weight_fraction: float = 0.0

    @classmethod
    def from_sources(
        cls,
        sources: Iterable[SourceRecord],
        conversation_words: int = 0,
        has_advanced: bool = False,
    ) -> "ConfidenceInputs":
        """
        Summarize merged sources into confidence inputs.

        Only sources with non-zero quality weight count toward source
        diversity and the anomaly fractions.
        """
        records = [r for r in sources if r.quality_weight > 0]
        total_weight = sum(r.quality_weight for r in records)

        def _fraction(flag: AnomalyFlag) -> float:
            if total_weight <= 0:
                return 0.0
            flagged = sum(r.quality_weight for r in records if flag in r.anomaly_flags)
            return flagged / total_weight

        return cls(
            total_words=sum(r.word_count for r in records) + conversation_words,
            distinct_source_types=len({r.source_type for r in records}),
            distinct_sources=len({r.source_id for r in records}),
            has_advanced=has_advanced,
            spam_weight_fraction=_fraction(AnomalyFlag.SPAM),
            low_diversity_weight_fraction=_fraction(AnomalyFlag.LOW_DIVERSITY),
        )

    @classmethod
    def from_profile(cls, profile: StyleProfile) -> "ConfidenceInputs":
        return cls.from_sources(
            profile.sources,
            conversation_words=profile.sample_count.conversation_words,
            has_advanced=profile.advanced is not None,
        )


@dataclass
class ConfidenceBreakdown:
    base: float
    bonus: float
    penalty: float
    confidence: float


def base_confidence(total_words: int, config: Optional[ConfidenceConfig] = None) -> float:
    """
    Look up the base confidence for ``total_words``.

    Words below the first band map to the first band's start value; words
    past the last band's upper bound saturate at its end value.
    """
    config = config or ConfidenceConfig()
    words = max(0, total_words)
    for lower, upper, start, end in config.bands:
        if lower <= words < upper:
            return start + (end - start) * (words - lower) / (upper - lower)
    if words < config.bands[0][0]:
        return config.bands[0][2]
    return config.bands[-1][3]


def compute_confidence(
    inputs: ConfidenceInputs, config: Optional[ConfidenceConfig] = None
) -> ConfidenceBreakdown:
    """
    Apply bonuses and penalties to the base curve and clamp the result.

    Bonuses: two or more source types, two or more sources, advanced
    analysis present. Penalties scale with the share of total weight that
    came from spam or low-diversity samples.
    """
    config = config or ConfidenceConfig()
    base = base_confidence(inputs.total_words, config)

    bonus = 0.0
    if inputs.distinct_source_types >= 2:
        bonus += config.multi_type_bonus
    if inputs.distinct_sources >= 2:
        bonus += config.multi_source_bonus
    if inputs.has_advanced:
        bonus += config.advanced_bonus

    penalty = (
        config.spam_penalty_factor * inputs.spam_weight_fraction
        + config.low_diversity_penalty_factor * inputs.low_diversity_weight_fraction
    )

    value = min(config.ceiling, max(0.0, base + bonus - penalty))
    return ConfidenceBreakdown(
        base=base,
        bonus=bonus,
        penalty=penalty,
        confidence=float(round_half_up(value, 4)),
    )


def confidence_for_samples(
    weighted: Iterable[WeightedSample],
    has_advanced: bool,
    conversation_words: int = 0,
    config: Optional[ConfidenceConfig] = None,
) -> ConfidenceBreakdown:
    """Confidence for a set of freshly scored samples."""
    records = [
        SourceRecord(
            source_id=ws.sample.source_id,
            source_type=ws.sample.source_type,
            word_count=ws.sample.word_count,
            quality_weight=ws.weight,
            anomaly_flags=list(ws.assessment.anomaly_flags),
        )
        for ws in weighted
    ]
    inputs = ConfidenceInputs.from_sources(records, conversation_words, has_advanced)
    return compute_confidence(inputs, config)


def initial_attribute_confidence(overall: float) -> Dict[BasicAttribute, float]:
    """Every basic attribute starts at the overall confidence."""
    return {attr: overall for attr in BasicAttribute}


__all__ = [
    "ConfidenceInputs",
    "ConfidenceBreakdown",
    "base_confidence",
    "compute_confidence",
    "confidence_for_samples",
    "initial_attribute_confidence",
]
