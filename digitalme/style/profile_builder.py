"""
Profile builder: merge + confidence -> ``StyleProfile``.

Used for the first merge of a user's sources and for every full re-merge
after a source is added or removed. A re-merge keeps the identity,
creation time, conversation word count and learning metadata of the
previous profile; attribute confidence restarts at the new overall
confidence.
"""

from __future__ import annotations

import copy
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from digitalme.config import StyleEngineConfig
from digitalme.models import (
    SampleCount,
    SourceRecord,
    SourceType,
    StyleProfile,
    StyleSample,
    WeightedSample,
)
from digitalme.style.confidence import (
    ConfidenceInputs,
    compute_confidence,
    initial_attribute_confidence,
)
from digitalme.style.merge import merge_samples
from digitalme.style.quality import score_sample
from digitalme.utils import utc_now

logger = logging.getLogger("ProfileBuilder")


def score_samples(
    samples: Sequence[StyleSample], config: Optional[StyleEngineConfig] = None
) -> List[WeightedSample]:
    """Attach a quality assessment to every sample, preserving order."""
    config = config or StyleEngineConfig()
    return [WeightedSample(sample, score_sample(sample, config.quality)) for sample in samples]


def build_style_profile(
    weighted: Sequence[WeightedSample],
    user_id: str = "",
    config: Optional[StyleEngineConfig] = None,
    previous: Optional[StyleProfile] = None,
    now: Optional[datetime] = None,
) -> StyleProfile:
    """
    Merge weighted samples and attach confidence.

    Args:
        weighted: Scored samples in input order.
        user_id: Owner of a new profile; ignored when ``previous`` is set.
        config: Engine configuration.
        previous: Profile being re-merged, if any.
        now: Timestamp for ``created_at`` / ``updated_at``.

    Returns:
        A new ``StyleProfile``; ``previous`` is not modified.

    Raises:
        ValidationError: If ``weighted`` is empty.
        InsufficientQualityDataError: If no sample carries weight.
        InvariantViolationError: If the built profile breaks an invariant.
    """
    config = config or StyleEngineConfig()
    now = now or utc_now()
    outcome = merge_samples(weighted, config.merge)

    records = [
        SourceRecord(
            source_id=ws.sample.source_id,
            source_type=ws.sample.source_type,
            word_count=ws.sample.word_count,
            quality_weight=ws.weight,
            anomaly_flags=list(ws.assessment.anomaly_flags),
        )
        for ws in outcome.used
    ]
    per_source: Dict[SourceType, int] = OrderedDict()
    for record in records:
        per_source[record.source_type] = per_source.get(record.source_type, 0) + record.word_count

    conversation_words = previous.sample_count.conversation_words if previous else 0
    breakdown = compute_confidence(
        ConfidenceInputs.from_sources(
            records, conversation_words, has_advanced=outcome.advanced is not None
        ),
        config.confidence,
    )

    profile = StyleProfile(
        basic=outcome.basic,
        advanced=outcome.advanced,
        confidence=breakdown.confidence,
        attribute_confidence=initial_attribute_confidence(breakdown.confidence),
        sample_count=SampleCount(
            per_source_word_counts=dict(per_source),
            conversation_words=conversation_words,
        ),
        source_attribution=outcome.source_attribution,
        sources=records,
        user_id=user_id,
        created_at=now,
        updated_at=now,
    )
    if previous is not None:
        profile.profile_id = previous.profile_id
        profile.user_id = previous.user_id
        profile.created_at = previous.created_at
        profile.version = previous.version + 1
        profile.learning_metadata = copy.deepcopy(previous.learning_metadata)

    profile.validate(config.merge.max_set_terms)

    logger.info(
        "Profile %s v%d: %d source(s), %d words, confidence=%.4f "
        "(base=%.4f bonus=%.2f penalty=%.3f)",
        profile.profile_id,
        profile.version,
        len(records),
        profile.sample_count.total_words,
        breakdown.confidence,
        breakdown.base,
        breakdown.bonus,
        breakdown.penalty,
    )
    return profile


__all__ = [
    "score_samples",
    "build_style_profile",
]
