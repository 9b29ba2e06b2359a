"""Tests for the multi-source merge engine."""

import pytest

from digitalme.config import MergeConfig
from digitalme.exceptions import InsufficientQualityDataError, ValidationError
from digitalme.models import (
    AdvancedStyle,
    BasicAttribute,
    ContextualStyle,
    Formality,
    MarkerType,
    PersonalityMarker,
    SignaturePhrase,
    SourceType,
    ThoughtPatterns,
    Tone,
    TransitionStyle,
)
from digitalme.style.merge import (
    attribution_percentages,
    merge_advanced,
    merge_samples,
    weighted_vote,
)
from digitalme.style.profile_builder import score_samples


def _percentages(contributions):
    return {c.source_type: c.contribution_percent for c in contributions}


# =========================================================================
# Attribution
# =========================================================================

class TestAttributionPercentages:

    def test_single_source_is_100(self):
        result = attribution_percentages({SourceType.TEXT: 0.85})
        assert _percentages(result) == {SourceType.TEXT: 100}

    def test_gmail_vs_blog(self):
        result = attribution_percentages({SourceType.GMAIL: 1.0, SourceType.BLOG: 0.65})
        assert [c.source_type for c in result] == [SourceType.GMAIL, SourceType.BLOG]
        assert _percentages(result) == {SourceType.GMAIL: 61, SourceType.BLOG: 39}

    def test_three_way_split_sums_to_exactly_100(self):
        result = attribution_percentages(
            {SourceType.GMAIL: 1.0, SourceType.TEXT: 1.0, SourceType.BLOG: 1.0}
        )
        assert sum(c.contribution_percent for c in result) == 100

    def test_zero_weights_omitted(self):
        result = attribution_percentages({SourceType.GMAIL: 1.0, SourceType.BLOG: 0.0})
        assert _percentages(result) == {SourceType.GMAIL: 100}

    def test_empty_when_no_weight(self):
        assert attribution_percentages({}) == []

    @pytest.mark.parametrize(
        "weights",
        [
            [0.33, 0.33, 0.34],
            [1.5, 0.325, 0.7, 0.425],
            [0.001, 1.0],
            [0.65, 0.65, 0.65, 0.65, 0.65, 0.65, 0.65],
        ],
    )
    def test_sums_to_100(self, weights):
        types = list(SourceType)
        result = attribution_percentages(
            {types[i % len(types)]: w for i, w in enumerate(weights)}
        )
        assert abs(sum(c.contribution_percent for c in result) - 100) <= 1


# =========================================================================
# Weighted vote
# =========================================================================

class TestWeightedVote:

    def test_highest_total_wins(self):
        votes = [("a", 0.5, 0.85), ("b", 0.6, 0.65), ("a", 0.2, 0.85)]
        assert weighted_vote(votes) == "a"

    def test_tie_prefers_higher_prior(self):
        votes = [("casual", 0.7, 0.7), ("formal", 0.7, 1.0)]
        assert weighted_vote(votes) == "formal"

    def test_full_tie_prefers_first_seen(self):
        votes = [("x", 0.5, 0.85), ("y", 0.5, 0.85)]
        assert weighted_vote(votes) == "x"

    def test_float_noise_counts_as_tie(self):
        votes = [("x", 0.1, 0.65), ("x", 0.2, 0.65), ("y", 0.3, 1.0)]
        assert weighted_vote(votes) == "y"

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            weighted_vote([])


# =========================================================================
# Basic attribute merge
# =========================================================================

class TestMergeSamples:

    def test_single_text_sample(self, make_sample):
        weighted = score_samples([make_sample(SourceType.TEXT, 600, tone=Tone.CASUAL)])
        outcome = merge_samples(weighted)

        assert outcome.basic.tone is Tone.CASUAL
        assert _percentages(outcome.source_attribution[BasicAttribute.TONE]) == {
            SourceType.TEXT: 100
        }

    def test_gmail_outweighs_blog(self, make_sample):
        weighted = score_samples(
            [
                make_sample(SourceType.BLOG, 1000, tone=Tone.CASUAL),
                make_sample(SourceType.GMAIL, 1000, tone=Tone.PROFESSIONAL),
            ]
        )
        outcome = merge_samples(weighted)

        assert outcome.basic.tone is Tone.PROFESSIONAL
        tone = outcome.source_attribution[BasicAttribute.TONE]
        assert tone[0].source_type is SourceType.GMAIL
        assert _percentages(tone) == {SourceType.GMAIL: 61, SourceType.BLOG: 39}

    def test_quantity_can_beat_prior(self, make_sample):
        weighted = score_samples(
            [
                make_sample(SourceType.GMAIL, 300, formality=Formality.FORMAL),
                make_sample(SourceType.BLOG, 2000, formality=Formality.CASUAL),
            ]
        )
        assert merge_samples(weighted).basic.formality is Formality.CASUAL

    def test_attribution_sums_for_every_attribute(self, make_sample):
        weighted = score_samples(
            [
                make_sample(SourceType.GMAIL, 800, vocabulary=["direct", "warm"]),
                make_sample(SourceType.BLOG, 1200, vocabulary=["warm", "nerdy"],
                            avoidance=["jargon"]),
                make_sample(SourceType.GITHUB, 300, vocabulary=["terse"]),
            ]
        )
        outcome = merge_samples(weighted)
        for attribute, contributions in outcome.source_attribution.items():
            assert abs(sum(c.contribution_percent for c in contributions) - 100) <= 1, attribute

    def test_zero_weight_sample_excluded(self, make_sample):
        weighted = score_samples(
            [
                make_sample(SourceType.GMAIL, 0, tone=Tone.PROFESSIONAL),
                make_sample(SourceType.BLOG, 600, tone=Tone.CASUAL),
            ]
        )
        outcome = merge_samples(weighted)
        assert outcome.basic.tone is Tone.CASUAL
        assert len(outcome.used) == 1
        assert _percentages(outcome.source_attribution[BasicAttribute.TONE]) == {
            SourceType.BLOG: 100
        }

    def test_empty_input_is_validation_error(self):
        with pytest.raises(ValidationError, match="no sources to merge"):
            merge_samples([])

    def test_all_zero_weight_is_insufficient_quality(self, make_sample):
        weighted = score_samples([make_sample(words=0), make_sample(words=0)])
        with pytest.raises(InsufficientQualityDataError):
            merge_samples(weighted)


# =========================================================================
# Set attribute merge
# =========================================================================

class TestSetAttributes:

    def test_terms_ranked_by_summed_weight(self, make_sample):
        weighted = score_samples(
            [
                make_sample(SourceType.BLOG, 600, vocabulary=["alpha", "beta"]),
                make_sample(SourceType.GMAIL, 600, vocabulary=["beta", "gamma"]),
            ]
        )
        assert merge_samples(weighted).basic.vocabulary == ["beta", "gamma", "alpha"]

    def test_capped_at_ten(self, make_sample):
        weighted = score_samples(
            [
                make_sample(SourceType.GMAIL, 600, vocabulary=[f"g{i}" for i in range(8)]),
                make_sample(SourceType.BLOG, 600, vocabulary=[f"b{i}" for i in range(8)]),
            ]
        )
        vocab = merge_samples(weighted).basic.vocabulary
        assert len(vocab) == 10
        assert vocab[:8] == [f"g{i}" for i in range(8)]

    def test_attribution_counts_retained_terms_only(self, make_sample):
        weighted = score_samples(
            [
                make_sample(SourceType.GMAIL, 600, vocabulary=[f"g{i}" for i in range(10)]),
                make_sample(SourceType.BLOG, 600, vocabulary=[f"b{i}" for i in range(10)]),
            ]
        )
        outcome = merge_samples(weighted)
        assert _percentages(outcome.source_attribution[BasicAttribute.VOCABULARY]) == {
            SourceType.GMAIL: 100
        }

    def test_terms_normalized_and_deduplicated(self, make_sample):
        weighted = score_samples(
            [make_sample(SourceType.TEXT, 600, vocabulary=["Plain ", "plain", "WARM  tone"])]
        )
        assert merge_samples(weighted).basic.vocabulary == ["plain", "warm tone"]

    def test_none_avoidance_dropped(self, make_sample):
        weighted = score_samples([make_sample(SourceType.TEXT, 600, avoidance=["none"])])
        outcome = merge_samples(weighted)
        assert outcome.basic.avoidance == []
        assert outcome.source_attribution[BasicAttribute.AVOIDANCE] == []

    def test_respects_configured_cap(self, make_sample):
        weighted = score_samples(
            [make_sample(SourceType.TEXT, 600, vocabulary=["a1", "a2", "a3", "a4"])]
        )
        outcome = merge_samples(weighted, MergeConfig(max_set_terms=2))
        assert outcome.basic.vocabulary == ["a1", "a2"]


# =========================================================================
# Advanced attribute merge
# =========================================================================

class TestMergeAdvanced:

    def test_none_when_no_sample_has_advanced(self, make_sample):
        weighted = score_samples([make_sample()])
        assert merge_samples(weighted).advanced is None

    def test_phrases_summed_case_insensitively(self):
        a = AdvancedStyle(signature_phrases=[SignaturePhrase("To be fair", 3)])
        b = AdvancedStyle(
            signature_phrases=[SignaturePhrase("to be fair", 2), SignaturePhrase("anyway", 4)]
        )
        merged = merge_advanced([(a, 1.0, 1.0), (b, 0.65, 0.65)])
        assert [(p.phrase, p.frequency) for p in merged.signature_phrases] == [
            ("To be fair", 5),
            ("anyway", 4),
        ]

    def test_phrases_capped(self):
        a = AdvancedStyle(signature_phrases=[SignaturePhrase(f"p{i}", i + 1) for i in range(15)])
        merged = merge_advanced([(a, 1.0, 1.0)])
        assert len(merged.signature_phrases) == 10
        assert merged.signature_phrases[0].phrase == "p14"

    def test_thought_patterns_weighted_average(self):
        a = AdvancedStyle(thought_patterns=ThoughtPatterns(80.0, TransitionStyle.ABRUPT, 4.0))
        b = AdvancedStyle(thought_patterns=ThoughtPatterns(20.0, TransitionStyle.SMOOTH, 1.0))
        merged = merge_advanced([(a, 1.0, 1.0), (b, 0.5, 0.65)])
        assert merged.thought_patterns.flow_score == pytest.approx(60.0)
        assert merged.thought_patterns.parenthetical_frequency == pytest.approx(3.0)
        assert merged.thought_patterns.transition_style is TransitionStyle.ABRUPT

    def test_markers_deduplicated_heaviest_first(self):
        light = AdvancedStyle(
            personality_markers=[PersonalityMarker("lol", MarkerType.HUMOR, "light")]
        )
        heavy = AdvancedStyle(
            personality_markers=[
                PersonalityMarker("LOL", MarkerType.HUMOR, "heavy"),
                PersonalityMarker("as a parent", MarkerType.PERSONAL_CONTEXT),
            ]
        )
        merged = merge_advanced([(light, 0.3, 0.65), (heavy, 1.0, 1.0)])
        assert [m.context for m in merged.personality_markers][:1] == ["heavy"]
        assert len(merged.personality_markers) == 2

    def test_contextual_vocabulary_union(self):
        a = AdvancedStyle(
            contextual_vocabulary={"Work": ContextualStyle(["ship", "scope"], "direct")}
        )
        b = AdvancedStyle(
            contextual_vocabulary={
                "work": ContextualStyle(["scope", "sync", "align", "ping", "loop", "deck"], "polite")
            }
        )
        merged = merge_advanced([(a, 1.0, 1.0), (b, 0.5, 0.65)])
        work = merged.contextual_vocabulary["work"]
        assert work.vocabulary[0] == "scope"
        assert len(work.vocabulary) == 5
        assert work.tone == "direct"

    def test_merge_samples_carries_advanced(self, make_sample):
        advanced = AdvancedStyle(signature_phrases=[SignaturePhrase("honestly", 2)])
        weighted = score_samples([make_sample(advanced=advanced), make_sample()])
        outcome = merge_samples(weighted)
        assert outcome.advanced is not None
        assert outcome.advanced.signature_phrases[0].phrase == "honestly"
