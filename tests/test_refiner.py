"""Tests for the profile refiner (incremental learning from conversation)."""

import copy

import pytest

from digitalme.config import RefinementConfig, StyleEngineConfig
from digitalme.exceptions import (
    BatchValidationError,
    ContentUnanalyzableError,
    ExtractionUnavailableError,
)
from digitalme.models import (
    INSUFFICIENT_SIGNAL,
    AdvancedStyle,
    BasicAttribute,
    Formality,
    OutcomeStatus,
    SignaturePhrase,
    SourceType,
    Tone,
)
from digitalme.style.profile_builder import build_style_profile, score_samples
from digitalme.style.quality import score_sample
from digitalme.style.refiner import (
    ProfileRefiner,
    _refine_terms,
    apply_refinement,
    diminishing_update,
    enum_switch_threshold,
    movement_allotment,
    validate_batch,
    word_count_factor,
)


@pytest.fixture
def profile(make_sample):
    """A 600-word text profile: balanced formality, two vocabulary terms."""
    sample = make_sample(
        SourceType.TEXT,
        600,
        tone=Tone.CONVERSATIONAL,
        formality=Formality.BALANCED,
        vocabulary=["plain", "direct"],
    )
    return build_style_profile(score_samples([sample]), user_id="user-1")


@pytest.fixture
def batch(clean_text):
    """Batch builder: ``words`` clean words split into 100-word messages."""

    def _batch(words):
        if words < 100:
            return [clean_text(words, prefix="msg")]
        return [clean_text(100, prefix=f"m{i}w") for i in range(words // 100)]

    return _batch


def _refiner(fake_extractor_cls, make_basic, **basic_kwargs):
    return ProfileRefiner(fake_extractor_cls(basic=make_basic(**basic_kwargs)))


# =========================================================================
# Batch contract
# =========================================================================

class TestValidateBatch:

    def test_valid_batch_returned(self):
        assert validate_batch(["hello there"]) == ["hello there"]

    def test_learning_disabled(self):
        with pytest.raises(BatchValidationError) as exc_info:
            validate_batch(["fine message"], learning_enabled=False)
        assert "learning is disabled" in exc_info.value.issues[0]

    def test_not_a_list(self):
        with pytest.raises(BatchValidationError):
            validate_batch("just a string")

    def test_empty_batch(self):
        with pytest.raises(BatchValidationError, match="empty"):
            validate_batch([])

    def test_too_many_messages(self):
        with pytest.raises(BatchValidationError, match="maximum is 50"):
            validate_batch(["hi"] * 51)

    def test_message_too_long_is_rejected_not_truncated(self):
        with pytest.raises(BatchValidationError, match="5000"):
            validate_batch(["x" * 5001])

    def test_batch_too_long(self):
        with pytest.raises(BatchValidationError, match="50000"):
            validate_batch(["y" * 4900] * 11)

    def test_all_issues_reported(self):
        with pytest.raises(BatchValidationError) as exc_info:
            validate_batch(["ok", 3, "   ", "z" * 5001])
        assert len(exc_info.value.issues) == 3

    def test_limits_configurable(self):
        with pytest.raises(BatchValidationError):
            validate_batch(["a", "b", "c"], config=RefinementConfig(max_messages=2))


# =========================================================================
# Movement rules
# =========================================================================

class TestMovementRules:

    @pytest.mark.parametrize(
        "confidence,allotment",
        [(0.0, 0.20), (0.49, 0.20), (0.5, 0.10), (0.79, 0.10), (0.8, 0.05), (0.95, 0.05)],
    )
    def test_allotment_tiers(self, confidence, allotment):
        assert movement_allotment(confidence) == allotment

    @pytest.mark.parametrize(
        "confidence,threshold",
        [(0.3, 0.10), (0.6, 0.05), (0.79, 0.05), (0.8, 0.04), (0.94, 0.04)],
    )
    def test_enum_switch_threshold_rises_with_confidence(self, confidence, threshold):
        assert enum_switch_threshold(confidence) == pytest.approx(threshold)

    def test_enum_switch_floor_configurable(self):
        config = RefinementConfig(enum_switch_floors=[(0.8, 0.15)])
        assert enum_switch_threshold(0.6, config) == pytest.approx(0.15)

    @pytest.mark.parametrize("words,factor", [(0, 0.0), (100, 0.2), (500, 1.0), (2000, 1.0)])
    def test_word_count_factor(self, words, factor):
        assert word_count_factor(words) == pytest.approx(factor)

    def test_diminishing_update(self):
        assert diminishing_update(0.5, 0.1) == pytest.approx(0.55)
        assert diminishing_update(0.94, 1.0) == 0.95

    def test_new_terms_added_above_bar(self):
        config = StyleEngineConfig()
        assert _refine_terms(["a", "b"], ["c", "a"], 0.2, config) == ["a", "b", "c"]

    def test_new_terms_skipped_below_bar(self):
        config = StyleEngineConfig()
        assert _refine_terms(["a", "b"], ["c"], 0.01, config) == ["a", "b"]

    def test_unreinforced_tail_evicted_past_cap(self):
        config = StyleEngineConfig()
        current = [f"t{i}" for i in range(10)]
        result = _refine_terms(current, ["t9", "n1", "n2"], 0.2, config)
        assert result == [f"t{i}" for i in range(7)] + ["t9", "n1", "n2"]


# =========================================================================
# Pure update
# =========================================================================

class TestApplyRefinement:

    def test_low_confidence_large_batch_switches_enum(
        self, profile, make_sample, sample_utc_now
    ):
        profile.attribute_confidence[BasicAttribute.FORMALITY] = 0.3
        sample = make_sample(SourceType.CONVERSATION, 600, formality=Formality.FORMAL)

        delta = apply_refinement(profile, sample, score_sample(sample), 600, now=sample_utc_now)

        assert profile.basic.formality is Formality.FORMAL
        change = next(c for c in delta.changes if c.attribute is BasicAttribute.FORMALITY)
        assert change.old_value is Formality.BALANCED
        assert change.new_value is Formality.FORMAL
        assert change.change_percent == 100

    def test_high_confidence_small_batch_holds_enum(self, profile, make_sample):
        profile.attribute_confidence[BasicAttribute.FORMALITY] = 0.9
        sample = make_sample(SourceType.CONVERSATION, 50, formality=Formality.FORMAL)

        delta = apply_refinement(profile, sample, score_sample(sample), 50)

        assert profile.basic.formality is Formality.BALANCED
        assert all(c.attribute is not BasicAttribute.FORMALITY for c in delta.changes)
        # 0.25 gain x (5% x 50/500) movement x (1 - 0.9)
        assert profile.attribute_confidence[BasicAttribute.FORMALITY] == pytest.approx(0.900125)

    @pytest.mark.parametrize("words,switched", [(300, False), (450, True)])
    def test_high_confidence_needs_absolute_movement(
        self, profile, make_sample, words, switched
    ):
        """At 0.94 the 5% allotment must still clear the 0.04 floor."""
        profile.attribute_confidence[BasicAttribute.FORMALITY] = 0.94
        sample = make_sample(SourceType.CONVERSATION, words, formality=Formality.FORMAL)

        apply_refinement(profile, sample, score_sample(sample), words)

        expected = Formality.FORMAL if switched else Formality.BALANCED
        assert profile.basic.formality is expected

    def test_set_attribution_kept_after_new_terms(self, profile, make_sample):
        """Conversation terms join the set without rewriting source attribution."""
        before = copy.deepcopy(profile.source_attribution[BasicAttribute.VOCABULARY])
        sample = make_sample(SourceType.CONVERSATION, 600, vocabulary=["plain", "snappy"])

        apply_refinement(profile, sample, score_sample(sample), 600)

        assert "snappy" in profile.basic.vocabulary
        assert profile.source_attribution[BasicAttribute.VOCABULARY] == before
        assert all(
            c.source_type is not SourceType.CONVERSATION
            for contributions in profile.source_attribution.values()
            for c in contributions
        )
        profile.validate()

    def test_set_change_percent(self, profile, make_sample):
        sample = make_sample(SourceType.CONVERSATION, 600, vocabulary=["plain", "snappy"])
        delta = apply_refinement(profile, sample, score_sample(sample), 600)

        assert profile.basic.vocabulary == ["plain", "direct", "snappy"]
        change = next(c for c in delta.changes if c.attribute is BasicAttribute.VOCABULARY)
        assert change.old_value == ["plain", "direct"]
        assert change.change_percent == 33

    def test_bookkeeping(self, profile, make_sample, sample_utc_now):
        before = profile.confidence
        sample = make_sample(SourceType.CONVERSATION, 600)
        delta = apply_refinement(profile, sample, score_sample(sample), 600, now=sample_utc_now)

        assert profile.sample_count.conversation_words == 600
        assert profile.learning_metadata.total_refinements == 1
        assert profile.learning_metadata.last_refinement_at == sample_utc_now
        assert profile.version == 2
        assert profile.confidence > before
        assert delta.words_analyzed == 600
        assert delta.confidence_change == pytest.approx(profile.confidence - before, abs=1e-4)
        assert delta.timestamp == sample_utc_now

    def test_advanced_untouched(self, make_sample):
        advanced = AdvancedStyle(signature_phrases=[SignaturePhrase("so yeah", 4)])
        profile = build_style_profile(score_samples([make_sample(advanced=advanced)]))
        original = copy.deepcopy(profile.advanced)
        sample = make_sample(
            SourceType.CONVERSATION,
            600,
            advanced=AdvancedStyle(signature_phrases=[SignaturePhrase("anyway", 9)]),
        )
        apply_refinement(profile, sample, score_sample(sample), 600)
        assert profile.advanced == original

    def test_spam_batch_moves_less(self, profile, make_sample, duplicated_text):
        clean = copy.deepcopy(profile)
        spammy = copy.deepcopy(profile)
        good = make_sample(SourceType.CONVERSATION, 600)
        bad = make_sample(SourceType.CONVERSATION, 600, text=duplicated_text(60, 0.4))

        apply_refinement(clean, good, score_sample(good), 600)
        apply_refinement(spammy, bad, score_sample(bad), 600)

        attr = BasicAttribute.TONE
        assert spammy.attribute_confidence[attr] < clean.attribute_confidence[attr]

    def test_same_batch_twice_keeps_raising_confidence(self, profile, make_sample):
        sample = make_sample(SourceType.CONVERSATION, 600)
        apply_refinement(profile, sample, score_sample(sample), 600)
        first = profile.attribute_confidence[BasicAttribute.TONE]
        apply_refinement(profile, sample, score_sample(sample), 600)
        assert profile.attribute_confidence[BasicAttribute.TONE] > first


# =========================================================================
# ProfileRefiner end to end
# =========================================================================

class TestProfileRefiner:

    @pytest.mark.asyncio
    async def test_scenario_high_confidence_small_batch(
        self, profile, batch, fake_extractor_cls, make_basic
    ):
        profile.attribute_confidence[BasicAttribute.FORMALITY] = 0.9
        refiner = _refiner(fake_extractor_cls, make_basic, formality=Formality.FORMAL)

        result = await refiner.refine(profile, batch(50))

        assert result.status is OutcomeStatus.SUCCESS
        assert result.profile.basic.formality is Formality.BALANCED
        assert 0.9 < result.profile.attribute_confidence[BasicAttribute.FORMALITY] < 0.901

    @pytest.mark.asyncio
    async def test_scenario_low_confidence_large_batch(
        self, profile, batch, fake_extractor_cls, make_basic
    ):
        profile.attribute_confidence[BasicAttribute.FORMALITY] = 0.3
        refiner = _refiner(fake_extractor_cls, make_basic, formality=Formality.FORMAL)

        result = await refiner.refine(profile, batch(600))

        assert result.applied
        assert result.profile.basic.formality is Formality.FORMAL
        assert result.delta.words_analyzed == 600

    @pytest.mark.asyncio
    async def test_scenario_five_words_is_noop(self, profile, fake_extractor):
        before = copy.deepcopy(profile)
        refiner = ProfileRefiner(fake_extractor)

        result = await refiner.refine(profile, ["just five words right here"])

        assert result.status is OutcomeStatus.NO_OP
        assert result.reason == INSUFFICIENT_SIGNAL
        assert result.error is None
        assert result.delta.is_empty
        assert result.profile == before
        assert result.profile.learning_metadata.total_refinements == 0
        assert fake_extractor.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error,retryable",
        [
            (ExtractionUnavailableError("service down"), True),
            (ContentUnanalyzableError("gibberish"), False),
        ],
    )
    async def test_extraction_failure_preserves_profile(
        self, profile, batch, fake_extractor_cls, error, retryable
    ):
        before = copy.deepcopy(profile)
        refiner = ProfileRefiner(fake_extractor_cls(error=error))

        result = await refiner.refine(profile, batch(300))

        assert result.status is OutcomeStatus.FAILED
        assert result.error.code == "extraction_failure"
        assert result.error.retryable is retryable
        assert result.profile == before
        assert profile == before

    @pytest.mark.asyncio
    async def test_validation_failure_is_a_value(self, profile, fake_extractor):
        profile.learning_metadata.enabled = False
        before = copy.deepcopy(profile)

        result = await ProfileRefiner(fake_extractor).refine(profile, ["some words " * 20])

        assert result.status is OutcomeStatus.FAILED
        assert result.error.code == "validation_error"
        assert result.error.issues
        assert result.profile == before

    @pytest.mark.asyncio
    async def test_extractor_receives_joined_batch(self, profile, fake_extractor):
        await ProfileRefiner(fake_extractor).refine(
            profile, ["first message has enough words", "  second message adds a few more  "]
        )
        call = fake_extractor.calls[0]
        assert call["source_type"] is SourceType.CONVERSATION
        assert call["text"] == (
            "first message has enough words\n\nsecond message adds a few more"
        )

    @pytest.mark.asyncio
    async def test_diminishing_returns(self, profile, batch, fake_extractor):
        refiner = ProfileRefiner(fake_extractor)
        attr = BasicAttribute.SENTENCE_LENGTH
        values = [profile.attribute_confidence[attr]]
        for _ in range(10):
            result = await refiner.refine(profile, batch(600))
            assert result.applied
            values.append(result.profile.attribute_confidence[attr])

        increments = [b - a for a, b in zip(values, values[1:])]
        assert all(i > 0 for i in increments)
        assert all(later < earlier for earlier, later in zip(increments, increments[1:]))
        assert values[-1] < 0.95
        assert profile.learning_metadata.total_refinements == 10

    @pytest.mark.asyncio
    async def test_attribute_confidence_never_exceeds_ceiling(self, profile, batch, fake_extractor):
        for attr in BasicAttribute:
            profile.attribute_confidence[attr] = 0.949
        refiner = ProfileRefiner(fake_extractor)
        for _ in range(3):
            await refiner.refine(profile, batch(600))
        assert all(v <= 0.95 for v in profile.attribute_confidence.values())
        assert profile.confidence <= 0.95
