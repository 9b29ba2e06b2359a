"""
Quality Scorer.

Computes a per-source quality weight from three factors:

1. A fixed trust prior by source type (gmail > text/conversation >
   github > blog).
2. A quantity multiplier from the sample's word count (0.5x below 500
   words, 1.0x up to 1500, 1.5x from 1500 on).
3. Anomaly penalties from the raw text: duplicated sentences (``spam``)
   and a vocabulary-diversity floor (``lowDiversity``).

Penalties multiply rather than replace, so a sample that is both spammy
and repetitive is penalized twice.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from digitalme.config import QualityConfig
from digitalme.models import AnomalyFlag, QualityAssessment, SourceType, StyleSample
from digitalme.style.text_preprocessor import split_sentences, tokenize_words

logger = logging.getLogger("QualityScorer")


def duplicate_sentence_ratio(text: str, config: QualityConfig) -> Optional[float]:
    """
    Fraction of sentences that repeat an earlier one.

    Returns ``None`` when the text has too few sentences for the check to
    be meaningful.
    """
    sentences = split_sentences(text, min_chars=config.min_sentence_chars)
    if len(sentences) < config.min_sentences_for_spam_check:
        return None
    return 1.0 - len(set(sentences)) / len(sentences)


def vocabulary_diversity(text: str, config: QualityConfig) -> Optional[float]:
    """
    Unique-token ratio over tokens of at least ``min_token_length`` chars.

    Returns ``None`` when there are too few tokens to judge.
    """
    tokens = tokenize_words(text, min_length=config.min_token_length)
    if len(tokens) < config.min_tokens_for_diversity_check:
        return None
    return len(set(tokens)) / len(tokens)


def detect_anomalies(
    text: str, config: QualityConfig
) -> Tuple[float, List[AnomalyFlag], float, Optional[float]]:
    """
    Run both anomaly checks on ``text``.

    Returns:
        ``(penalty, flags, duplicate_ratio, diversity_ratio)``.
    """
    penalty = 1.0
    flags: List[AnomalyFlag] = []

    dup_ratio = duplicate_sentence_ratio(text, config)
    if dup_ratio is not None and dup_ratio >= config.spam_duplicate_ratio:
        penalty *= config.spam_penalty
        flags.append(AnomalyFlag.SPAM)

    diversity = vocabulary_diversity(text, config)
    if diversity is not None and diversity < config.diversity_floor:
        penalty *= config.diversity_penalty
        flags.append(AnomalyFlag.LOW_DIVERSITY)

    return penalty, flags, dup_ratio or 0.0, diversity


def score_quality(
    source_type: SourceType,
    word_count: int,
    text: str,
    config: Optional[QualityConfig] = None,
) -> QualityAssessment:
    """
    Compute the quality weight of one sample.

    Args:
        source_type: Origin of the sample.
        word_count: Number of words the sample was extracted from.
        text: Raw text used for the anomaly checks.
        config: Thresholds; defaults to ``QualityConfig()``.

    Returns:
        ``QualityAssessment`` whose ``quality_weight`` is 0 for an empty
        sample.

    Raises:
        ValueError: If ``word_count`` is negative or the source type has
            no configured prior.
    """
    config = config or QualityConfig()
    if word_count < 0:
        raise ValueError(f"word_count must be >= 0, got {word_count}")

    prior = config.get_prior(source_type)
    if word_count == 0:
        return QualityAssessment(quality_weight=0.0, prior=prior, quantity_multiplier=0.0)

    multiplier = config.get_quantity_multiplier(word_count)
    penalty, flags, dup_ratio, diversity = detect_anomalies(text, config)
    weight = prior * multiplier * penalty

    if flags:
        logger.info(
            "Source %s (%d words) flagged %s: duplicate_ratio=%.2f diversity=%s weight=%.3f",
            source_type.value,
            word_count,
            [f.value for f in flags],
            dup_ratio,
            "n/a" if diversity is None else f"{diversity:.2f}",
            weight,
        )

    return QualityAssessment(
        quality_weight=weight,
        prior=prior,
        quantity_multiplier=multiplier,
        penalty=penalty,
        anomaly_flags=flags,
        duplicate_ratio=dup_ratio,
        diversity_ratio=diversity,
    )


def score_sample(
    sample: StyleSample, config: Optional[QualityConfig] = None
) -> QualityAssessment:
    """Score a ``StyleSample`` using its own source type, size and text."""
    return score_quality(sample.source_type, sample.word_count, sample.text, config)


__all__ = [
    "duplicate_sentence_ratio",
    "vocabulary_diversity",
    "detect_anomalies",
    "score_quality",
    "score_sample",
]
