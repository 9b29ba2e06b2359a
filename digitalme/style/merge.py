"""
Multi-Source Merge Engine.

Combines N quality-weighted ``StyleSample``s into one resolved style:

- **Enum attributes** (tone, formality, sentenceLength): weighted vote.
  Ties go to the value backed by the most trusted source type, then to
  the value seen first in input order.
- **Set attributes** (vocabulary, avoidance): weighted union ranked by
  summed weight and truncated to the configured cap. Attribution only
  counts terms that survived the cut.
- **Advanced attributes**: phrase union with summed frequencies,
  weighted thought-pattern averages, deduplicated markers and
  per-context vocabulary unions.

Attribution percentages are integers that sum to exactly 100 (largest
remainder rounding), listed in descending order.

All functions here are pure and synchronous.
"""

from __future__ import annotations

import logging
import math
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Hashable, List, Optional, Sequence, Tuple

from digitalme.config import MergeConfig
from digitalme.exceptions import InsufficientQualityDataError, ValidationError
from digitalme.models import (
    ENUM_ATTRIBUTES,
    SET_ATTRIBUTES,
    AdvancedStyle,
    BasicAttribute,
    BasicStyle,
    ContextualStyle,
    PersonalityMarker,
    SignaturePhrase,
    SourceContribution,
    SourceType,
    ThoughtPatterns,
    TransitionStyle,
    WeightedSample,
    normalize_terms,
)

logger = logging.getLogger("MergeEngine")

# Avoidance term meaning "avoids nothing"
NO_AVOIDANCE = "none"

# Float sums are compared at this precision when detecting ties
_TIE_DIGITS = 9


@dataclass
class MergeOutcome:
    """Result of merging samples, before confidence is attached."""

    basic: BasicStyle
    advanced: Optional[AdvancedStyle]
    source_attribution: Dict[BasicAttribute, List[SourceContribution]]
    used: List[WeightedSample]
    total_weight: float


# ======================================================================
# ATTRIBUTION
# ======================================================================


def attribution_percentages(
    weights: Dict[SourceType, float]
) -> List[SourceContribution]:
    """
    Convert per-source-type weights into integer percentages.

    Uses largest-remainder rounding so the result sums to exactly 100.
    Types that round to 0% are omitted. Ordered by descending percentage,
    then by insertion order.

    Returns:
        An empty list when the total weight is zero.
    """
    positive = [(source, w) for source, w in weights.items() if w > 0]
    total = sum(w for _, w in positive)
    if total <= 0:
        return []

    raw = [(source, w * 100.0 / total) for source, w in positive]
    floors = {source: math.floor(share) for source, share in raw}
    remaining = 100 - sum(floors.values())

    # Largest fractional part first; stable order breaks exact ties
    by_remainder = sorted(
        range(len(raw)),
        key=lambda i: -(raw[i][1] - floors[raw[i][0]]),
    )
    for i in by_remainder[:remaining]:
        floors[raw[i][0]] += 1

    order = {source: i for i, (source, _) in enumerate(positive)}
    contributions = [
        SourceContribution(source_type=source, contribution_percent=percent)
        for source, percent in floors.items()
        if percent > 0
    ]
    contributions.sort(key=lambda c: (-c.contribution_percent, order[c.source_type]))
    return contributions


# ======================================================================
# WEIGHTED VOTE
# ======================================================================


def weighted_vote(votes: Sequence[Tuple[Hashable, float, float]]) -> Any:
    """
    Pick the value with the highest summed weight.

    Args:
        votes: ``(value, weight, prior)`` in input order.

    Tie-break: highest source prior among each value's voters, then the
    value whose first vote came earliest.

    Raises:
        ValueError: If ``votes`` is empty.
    """
    if not votes:
        raise ValueError("weighted_vote needs at least one vote")

    totals: Dict[Hashable, float] = {}
    best_prior: Dict[Hashable, float] = {}
    first_seen: Dict[Hashable, int] = {}
    for index, (value, weight, prior) in enumerate(votes):
        totals[value] = totals.get(value, 0.0) + weight
        best_prior[value] = max(best_prior.get(value, 0.0), prior)
        first_seen.setdefault(value, index)

    return max(
        totals,
        key=lambda v: (round(totals[v], _TIE_DIGITS), best_prior[v], -first_seen[v]),
    )


def _merge_enum_attribute(
    attribute: BasicAttribute, used: Sequence[WeightedSample]
) -> Tuple[Any, List[SourceContribution]]:
    votes = [
        (ws.sample.basic.get(attribute), ws.weight, ws.assessment.prior) for ws in used
    ]
    winner = weighted_vote(votes)

    by_type: Dict[SourceType, float] = OrderedDict()
    for ws in used:
        by_type[ws.sample.source_type] = by_type.get(ws.sample.source_type, 0.0) + ws.weight
    return winner, attribution_percentages(by_type)


# ======================================================================
# WEIGHTED SET UNION
# ======================================================================


def sample_terms(sample_basic: BasicStyle, attribute: BasicAttribute) -> List[str]:
    """Normalized terms of one sample's set attribute."""
    terms = normalize_terms(sample_basic.get(attribute))
    if attribute is BasicAttribute.AVOIDANCE:
        terms = [t for t in terms if t != NO_AVOIDANCE]
    return terms


def _merge_set_attribute(
    attribute: BasicAttribute, used: Sequence[WeightedSample], cap: int
) -> Tuple[List[str], List[SourceContribution]]:
    scores: Dict[str, float] = OrderedDict()
    contributors: Dict[str, Dict[SourceType, float]] = {}

    for ws in used:
        for term in sample_terms(ws.sample.basic, attribute):
            scores[term] = scores.get(term, 0.0) + ws.weight
            per_type = contributors.setdefault(term, OrderedDict())
            per_type[ws.sample.source_type] = (
                per_type.get(ws.sample.source_type, 0.0) + ws.weight
            )

    position = {term: i for i, term in enumerate(scores)}
    ranked = sorted(scores, key=lambda t: (-round(scores[t], _TIE_DIGITS), position[t]))
    retained = ranked[:cap]

    by_type: Dict[SourceType, float] = OrderedDict()
    for term in retained:
        for source, weight in contributors[term].items():
            by_type[source] = by_type.get(source, 0.0) + weight

    if len(ranked) > cap:
        logger.debug(
            "%s: kept %d of %d terms", attribute.value, len(retained), len(ranked)
        )
    return retained, attribution_percentages(by_type)


# ======================================================================
# ADVANCED ATTRIBUTES
# ======================================================================


def _normalize_text(text: str) -> str:
    return " ".join(text.lower().split())


def merge_advanced(
    items: Sequence[Tuple[AdvancedStyle, float, float]],
    config: Optional[MergeConfig] = None,
) -> Optional[AdvancedStyle]:
    """
    Merge advanced analyses.

    Args:
        items: ``(advanced, weight, prior)`` in input order.
        config: Caps; defaults to ``MergeConfig()``.

    Returns:
        ``None`` when ``items`` is empty, so absent analysis stays absent.
    """
    config = config or MergeConfig()
    if not items:
        return None

    # -- Signature phrases: case-insensitive union, summed frequency ----
    phrases: Dict[str, SignaturePhrase] = OrderedDict()
    for advanced, _, _ in items:
        for phrase in advanced.signature_phrases:
            key = _normalize_text(phrase.phrase)
            if not key:
                continue
            if key in phrases:
                phrases[key].frequency += phrase.frequency
            else:
                phrases[key] = SignaturePhrase(
                    phrase=phrase.phrase, frequency=phrase.frequency, category=phrase.category
                )
    phrase_order = {key: i for i, key in enumerate(phrases)}
    top_phrases = sorted(
        phrases.values(),
        key=lambda p: (-p.frequency, phrase_order[_normalize_text(p.phrase)]),
    )[: config.max_signature_phrases]

    # -- Thought patterns: weighted means + transition vote -------------
    thought_items = [
        (advanced.thought_patterns, weight, prior)
        for advanced, weight, prior in items
        if advanced.thought_patterns is not None
    ]
    thought: Optional[ThoughtPatterns] = None
    if thought_items:
        total = sum(weight for _, weight, _ in thought_items)
        if total > 0:
            flow = sum(tp.flow_score * w for tp, w, _ in thought_items) / total
            parenthetical = (
                sum(tp.parenthetical_frequency * w for tp, w, _ in thought_items) / total
            )
        else:
            flow = sum(tp.flow_score for tp, _, _ in thought_items) / len(thought_items)
            parenthetical = sum(
                tp.parenthetical_frequency for tp, _, _ in thought_items
            ) / len(thought_items)
        style = weighted_vote(
            [(tp.transition_style, w, prior) for tp, w, prior in thought_items]
        )
        thought = ThoughtPatterns(
            flow_score=round(flow, 2),
            transition_style=TransitionStyle(style),
            parenthetical_frequency=round(parenthetical, 2),
        )

    # -- Personality markers: heaviest samples first, dedup, cap --------
    by_weight = sorted(range(len(items)), key=lambda i: -items[i][1])
    markers: Dict[str, PersonalityMarker] = OrderedDict()
    for i in by_weight:
        for marker in items[i][0].personality_markers:
            key = _normalize_text(marker.text)
            if key and key not in markers:
                markers[key] = PersonalityMarker(
                    text=marker.text, type=marker.type, context=marker.context
                )
    top_markers = list(markers.values())[: config.max_personality_markers]

    # -- Contextual vocabulary: per-context union, tone from heaviest ---
    context_terms: Dict[str, Dict[str, float]] = OrderedDict()
    context_tone: Dict[str, Tuple[float, str]] = {}
    for advanced, weight, _ in items:
        for name, ctx in advanced.contextual_vocabulary.items():
            key = name.strip().lower()
            if not key:
                continue
            terms = context_terms.setdefault(key, OrderedDict())
            for term in normalize_terms(ctx.vocabulary):
                terms[term] = terms.get(term, 0.0) + weight
            if ctx.tone and (key not in context_tone or weight > context_tone[key][0]):
                context_tone[key] = (weight, ctx.tone)

    contexts: Dict[str, ContextualStyle] = OrderedDict()
    for key in list(context_terms)[: config.max_contexts]:
        terms = context_terms[key]
        order = {t: i for i, t in enumerate(terms)}
        ranked = sorted(terms, key=lambda t: (-round(terms[t], _TIE_DIGITS), order[t]))
        contexts[key] = ContextualStyle(
            vocabulary=ranked[: config.max_context_vocabulary],
            tone=context_tone.get(key, (0.0, ""))[1],
        )

    return AdvancedStyle(
        signature_phrases=top_phrases,
        thought_patterns=thought,
        personality_markers=top_markers,
        contextual_vocabulary=dict(contexts),
    )


# ======================================================================
# ENTRY POINT
# ======================================================================


def merge_samples(
    weighted: Sequence[WeightedSample], config: Optional[MergeConfig] = None
) -> MergeOutcome:
    """
    Merge quality-weighted samples into one resolved style.

    Zero-weight samples are excluded entirely.

    Args:
        weighted: Samples with their quality assessments, in input order.
        config: Caps; defaults to ``MergeConfig()``.

    Returns:
        ``MergeOutcome`` with basic/advanced attributes and attribution.

    Raises:
        ValidationError: If ``weighted`` is empty.
        InsufficientQualityDataError: If every sample has zero weight.
    """
    config = config or MergeConfig()
    weighted = list(weighted)
    if not weighted:
        raise ValidationError("no sources to merge")

    used = [ws for ws in weighted if ws.weight > 0]
    if not used:
        raise InsufficientQualityDataError(
            f"All {len(weighted)} sample(s) have zero quality weight; "
            "no usable profile can be built"
        )
    if len(used) < len(weighted):
        logger.info("Excluded %d zero-weight sample(s)", len(weighted) - len(used))

    attribution: Dict[BasicAttribute, List[SourceContribution]] = {}
    resolved: Dict[BasicAttribute, Any] = {}

    for attribute in ENUM_ATTRIBUTES:
        resolved[attribute], attribution[attribute] = _merge_enum_attribute(attribute, used)
    for attribute in SET_ATTRIBUTES:
        resolved[attribute], attribution[attribute] = _merge_set_attribute(
            attribute, used, config.max_set_terms
        )

    basic = BasicStyle(
        tone=resolved[BasicAttribute.TONE],
        formality=resolved[BasicAttribute.FORMALITY],
        sentence_length=resolved[BasicAttribute.SENTENCE_LENGTH],
        vocabulary=resolved[BasicAttribute.VOCABULARY],
        avoidance=resolved[BasicAttribute.AVOIDANCE],
    )

    advanced = merge_advanced(
        [
            (ws.sample.advanced, ws.weight, ws.assessment.prior)
            for ws in used
            if ws.sample.advanced is not None
        ],
        config,
    )

    total_weight = sum(ws.weight for ws in used)
    logger.info(
        "Merged %d sample(s), total weight %.3f: tone=%s formality=%s sentenceLength=%s",
        len(used),
        total_weight,
        basic.tone.value,
        basic.formality.value,
        basic.sentence_length.value,
    )
    return MergeOutcome(
        basic=basic,
        advanced=advanced,
        source_attribution=attribution,
        used=used,
        total_weight=total_weight,
    )


__all__ = [
    "MergeOutcome",
    "NO_AVOIDANCE",
    "attribution_percentages",
    "weighted_vote",
    "sample_terms",
    "merge_advanced",
    "merge_samples",
]
