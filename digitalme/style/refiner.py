"""
Profile Refiner (incremental learning from conversation).

Given an existing ``StyleProfile`` and a batch of new messages, the refiner
extracts a provisional conversation sample and nudges the profile toward
it with confidence-weighted, diminishing-returns updates:

- Each basic attribute gets a movement allotment from its current
  confidence (20% below 0.5, 10% below 0.8, 5% otherwise), scaled by the
  batch size (full effect at 500 words) and the sample's anomaly penalty.
- Enum attributes switch only when the scaled movement reaches both the
  configured share of the allotment and an absolute floor that rises with
  confidence (0.03, or 0.04 from 0.8 up); otherwise they stay unchanged.
- Set attributes admit new terms whose ``movement * relevance`` clears the
  inclusion bar, evicting the weakest unreinforced terms past the cap.
- Attribute confidence grows by ``gain * movement * (1 - current)``.

Advanced attributes are never touched by refinement.

The update is computed on a deep copy and copied back onto the caller's
profile only after every step succeeded, so a failure never leaves a
partially-applied update behind.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import fields
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from digitalme.config import RefinementConfig, StyleEngineConfig
from digitalme.exceptions import BatchValidationError, ExtractionError
from digitalme.models import (
    CONFIDENCE_CEILING,
    ENUM_ATTRIBUTES,
    INSUFFICIENT_SIGNAL,
    SET_ATTRIBUTES,
    AttributeChange,
    BasicAttribute,
    DeltaReport,
    ErrorInfo,
    OutcomeStatus,
    QualityAssessment,
    RefinementResult,
    SourceType,
    StyleProfile,
    StyleSample,
)
from digitalme.style.confidence import ConfidenceInputs, compute_confidence
from digitalme.style.merge import sample_terms
from digitalme.style.quality import score_sample
from digitalme.style.text_preprocessor import count_words
from digitalme.utils import round_half_up, utc_now

logger = logging.getLogger("ProfileRefiner")


# ======================================================================
# BATCH CONTRACT
# ======================================================================


def validate_batch(
    messages: Any,
    learning_enabled: bool = True,
    config: Optional[RefinementConfig] = None,
) -> List[str]:
    """
    Check a refinement batch against the input contract.

    Oversized input is rejected, never truncated.

    Returns:
        The validated messages.

    Raises:
        BatchValidationError: Listing every issue found.
    """
    config = config or RefinementConfig()
    issues: List[str] = []

    if not learning_enabled:
        issues.append("learning is disabled for this profile")

    if not isinstance(messages, list):
        issues.append(f"messages must be an array of strings, got {type(messages).__name__}")
        raise BatchValidationError(issues)

    if not messages:
        issues.append("batch is empty")
    elif len(messages) > config.max_messages:
        issues.append(
            f"batch has {len(messages)} messages, maximum is {config.max_messages}"
        )

    total_chars = 0
    for i, message in enumerate(messages):
        if not isinstance(message, str):
            issues.append(f"message {i} is {type(message).__name__}, expected string")
            continue
        total_chars += len(message)
        if not message.strip():
            issues.append(f"message {i} is empty")
        elif len(message) > config.max_message_chars:
            issues.append(
                f"message {i} has {len(message)} characters, "
                f"maximum is {config.max_message_chars}"
            )

    if total_chars > config.max_batch_chars:
        issues.append(
            f"batch has {total_chars} characters, maximum is {config.max_batch_chars}"
        )

    if issues:
        raise BatchValidationError(issues)
    return messages


def batch_word_count(messages: List[str]) -> int:
    return sum(count_words(m) for m in messages)


def join_batch(messages: List[str]) -> str:
    """Concatenate a batch into one text blob, one paragraph per message."""
    return "\n\n".join(m.strip() for m in messages)


# ======================================================================
# MOVEMENT RULES
# ======================================================================


def movement_allotment(confidence: float, config: Optional[RefinementConfig] = None) -> float:
    """Maximum movement for an attribute at the given confidence."""
    config = config or RefinementConfig()
    for bound, allotment in config.movement_tiers:
        if confidence < bound:
            return allotment
    return config.high_confidence_allotment


def enum_switch_threshold(confidence: float, config: Optional[RefinementConfig] = None) -> float:
    """Scaled movement an enum attribute needs before it switches value."""
    config = config or RefinementConfig()
    floor = config.high_confidence_switch_floor
    for bound, tier_floor in config.enum_switch_floors:
        if confidence < bound:
            floor = tier_floor
            break
    return max(config.enum_switch_ratio * movement_allotment(confidence, config), floor)


def word_count_factor(words: int, config: Optional[RefinementConfig] = None) -> float:
    """``words / full_effect_words`` capped at 1.0."""
    config = config or RefinementConfig()
    return min(1.0, max(0, words) / config.full_effect_words)


def diminishing_update(current: float, increase: float, ceiling: float = CONFIDENCE_CEILING) -> float:
    """``current + increase * (1 - current)``, never above ``ceiling``."""
    return min(ceiling, current + increase * (1.0 - current))


def _refine_terms(
    current: List[str],
    incoming: List[str],
    movement: float,
    config: StyleEngineConfig,
) -> List[str]:
    """
    Fold new terms into an existing ranked term list.

    Existing terms keep their order (earlier means heavier). New terms are
    appended in relevance order when ``movement * relevance`` clears the
    inclusion bar. Past the cap, unreinforced existing terms are evicted
    from the tail first, then the weakest additions.
    """
    cap = config.merge.max_set_terms
    bar = config.refinement.set_inclusion_bar
    existing = set(current)

    reinforced = set()
    additions: List[str] = []
    for index, term in enumerate(incoming):
        relevance = 1.0 - index / len(incoming)
        if term in existing:
            reinforced.add(term)
        elif movement * relevance >= bar:
            additions.append(term)

    if not additions:
        return list(current)

    result = list(current) + additions
    overflow = len(result) - cap
    if overflow > 0:
        evictable = [t for t in reversed(current) if t not in reinforced][:overflow]
        result = [t for t in result if t not in evictable]
        overflow = len(result) - cap
        if overflow > 0:
            result = result[:-overflow]
    return result


# ======================================================================
# PURE UPDATE
# ======================================================================


def apply_refinement(
    profile: StyleProfile,
    sample: StyleSample,
    assessment: QualityAssessment,
    words: int,
    config: Optional[StyleEngineConfig] = None,
    now: Optional[datetime] = None,
) -> DeltaReport:
    """
    Merge a conversation sample into ``profile`` in place.

    Args:
        profile: Profile to update. Only modified if the whole update
            succeeds.
        sample: Provisional sample extracted from the batch.
        assessment: Quality assessment of ``sample``.
        words: Word count of the batch.
        config: Engine configuration.
        now: Timestamp recorded on the profile and the delta report.

    Returns:
        ``DeltaReport`` describing every changed attribute.

    Raises:
        InvariantViolationError: If the updated profile breaks an
            invariant (the input profile is left untouched).
    """
    config = config or StyleEngineConfig()
    rc = config.refinement
    now = now or utc_now()

    working = copy.deepcopy(profile)
    factor = word_count_factor(words, rc) * assessment.penalty

    movements: Dict[BasicAttribute, Tuple[float, float]] = {}
    for attribute in BasicAttribute:
        current = working.attribute_confidence.get(attribute, working.confidence)
        movements[attribute] = (current, movement_allotment(current, rc) * factor)

    changes: List[AttributeChange] = []

    for attribute in ENUM_ATTRIBUTES:
        current, movement = movements[attribute]
        threshold = enum_switch_threshold(current, rc)
        old_value = working.basic.get(attribute)
        new_value = sample.basic.get(attribute)
        if new_value != old_value and movement >= threshold:
            working.basic.set(attribute, new_value)
            changes.append(AttributeChange(attribute, old_value, new_value, 100))
        elif new_value != old_value:
            logger.debug(
                "%s: %s -> %s held back (movement %.4f < %.4f)",
                attribute.value,
                old_value.value,
                new_value.value,
                movement,
                threshold,
            )

    for attribute in SET_ATTRIBUTES:
        _, movement = movements[attribute]
        old_terms = list(working.basic.get(attribute))
        new_terms = _refine_terms(
            old_terms, sample_terms(sample.basic, attribute), movement, config
        )
        if new_terms != old_terms:
            working.basic.set(attribute, new_terms)
            added = [t for t in new_terms if t not in old_terms]
            percent = round(100 * len(added) / len(new_terms)) if new_terms else 0
            changes.append(AttributeChange(attribute, old_terms, new_terms, percent))

    confidence_changes: Dict[BasicAttribute, float] = {}
    for attribute, (_, movement) in movements.items():
        current = working.attribute_confidence.get(attribute, working.confidence)
        updated = round_half_up(
            diminishing_update(current, rc.confidence_gain * movement, config.confidence.ceiling),
            6,
        )
        working.attribute_confidence[attribute] = updated
        confidence_changes[attribute] = round_half_up(updated - current, 6)

    working.sample_count.conversation_words += words
    old_confidence = working.confidence
    working.confidence = compute_confidence(
        ConfidenceInputs.from_profile(working), config.confidence
    ).confidence

    working.learning_metadata.total_refinements += 1
    working.learning_metadata.last_refinement_at = now
    working.version += 1
    working.updated_at = now

    working.validate(config.merge.max_set_terms)

    # Commit
    for f in fields(StyleProfile):
        setattr(profile, f.name, getattr(working, f.name))

    delta = DeltaReport(
        changes=changes,
        words_analyzed=words,
        confidence_change=round_half_up(profile.confidence - old_confidence, 4),
        attribute_confidence_changes=confidence_changes,
        timestamp=now,
    )
    logger.info(
        "Refined profile %s with %d words: %d change(s), confidence %.4f -> %.4f",
        profile.profile_id,
        words,
        len(changes),
        old_confidence,
        profile.confidence,
    )
    return delta


# ======================================================================
# REFINER
# ======================================================================


class ProfileRefiner:
    """Runs a refinement batch end to end against a style extractor.

    Args:
        extractor: Object with an async ``extract(text, source_type, ...)``
            method returning a ``StyleSample``.
        config: Engine configuration.
    """

    def __init__(self, extractor: Any, config: Optional[StyleEngineConfig] = None) -> None:
        self.extractor = extractor
        self.config = config or StyleEngineConfig()

    async def refine(
        self,
        profile: StyleProfile,
        messages: Any,
        now: Optional[datetime] = None,
    ) -> RefinementResult:
        """
        Refine ``profile`` from a batch of messages.

        Returns a ``RefinementResult`` for every expected outcome:

        - ``FAILED`` with a ``validation_error`` for a malformed batch or
          disabled learning.
        - ``NO_OP`` with reason ``insufficient_signal`` below the minimum
          word count.
        - ``FAILED`` with an ``extraction_failure`` when the extractor
          fails; the profile is preserved.
        - ``SUCCESS`` with the updated profile and its delta report.
        """
        now = now or utc_now()
        rc = self.config.refinement

        try:
            batch = validate_batch(messages, profile.learning_metadata.enabled, rc)
        except BatchValidationError as exc:
            logger.warning("Refinement rejected for %s: %s", profile.profile_id, exc.issues)
            return RefinementResult(
                status=OutcomeStatus.FAILED,
                profile=profile,
                delta=DeltaReport(timestamp=now),
                error=ErrorInfo.from_exception(exc),
            )

        words = batch_word_count(batch)
        if words < rc.min_words:
            logger.info(
                "Refinement skipped for %s: %d words < %d",
                profile.profile_id,
                words,
                rc.min_words,
            )
            return RefinementResult(
                status=OutcomeStatus.NO_OP,
                profile=profile,
                delta=DeltaReport(timestamp=now),
                reason=INSUFFICIENT_SIGNAL,
            )

        try:
            sample = await self.extractor.extract(join_batch(batch), SourceType.CONVERSATION)
        except ExtractionError as exc:
            logger.error(
                "Refinement failed for %s, profile preserved: %s (retryable=%s)",
                profile.profile_id,
                exc,
                exc.retryable,
            )
            return RefinementResult(
                status=OutcomeStatus.FAILED,
                profile=profile,
                delta=DeltaReport(timestamp=now),
                error=ErrorInfo.from_exception(exc),
            )

        sample.source_type = SourceType.CONVERSATION
        sample.word_count = words
        assessment = score_sample(sample, self.config.quality)
        delta = apply_refinement(profile, sample, assessment, words, self.config, now)
        return RefinementResult(status=OutcomeStatus.SUCCESS, profile=profile, delta=delta)


__all__ = [
    "validate_batch",
    "batch_word_count",
    "join_batch",
    "movement_allotment",
    "enum_switch_threshold",
    "word_count_factor",
    "diminishing_update",
    "apply_refinement",
    "ProfileRefiner",
]
