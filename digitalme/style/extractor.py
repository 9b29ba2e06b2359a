"""
Per-source style extractor.

Turns raw text from one source into a ``StyleSample`` by asking Claude for
a structured analysis. The text is anonymized before it is sent; long
texts are analyzed in chunks for the optional advanced pass and the chunk
results are merged with the same rules the merge engine uses.

Error mapping:
    - Text below the minimum word count -> ``ContentUnanalyzableError``
    - Model kept returning invalid JSON or the wrong shape
      -> ``ContentUnanalyzableError``
    - Transport / API failures after retries -> ``ExtractionUnavailableError``

Unknown enum values in otherwise valid output are normalized to neutral
defaults with a warning rather than rejected.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Protocol, Type

from digitalme.config import MergeConfig, Settings, get_settings
from digitalme.exceptions import (
    ContentUnanalyzableError,
    ExtractionUnavailableError,
    RetryExhaustedError,
)
from digitalme.models import (
    AdvancedStyle,
    BasicStyle,
    ContextualStyle,
    Formality,
    MarkerType,
    PersonalityMarker,
    PhraseCategory,
    SentenceLength,
    SignaturePhrase,
    SourceType,
    StyleSample,
    ThoughtPatterns,
    Tone,
    TransitionStyle,
    normalize_terms,
)
from digitalme.style.merge import merge_advanced
from digitalme.style.text_preprocessor import anonymize_text, chunk_text, count_words
from digitalme.tools.claude_client import ClaudeClient
from digitalme.utils import generate_id

logger = logging.getLogger("StyleExtractor")

_TONE_ALIASES = {
    "friendly": Tone.CONVERSATIONAL,
    "informal": Tone.CASUAL,
    "relaxed": Tone.CASUAL,
    "formal": Tone.PROFESSIONAL,
    "business": Tone.PROFESSIONAL,
    "analytical": Tone.PROFESSIONAL,
}
_FORMALITY_ALIASES = {
    "informal": Formality.CASUAL,
    "neutral": Formality.BALANCED,
    "semi-formal": Formality.BALANCED,
}
_SENTENCE_ALIASES = {
    "varied": SentenceLength.MEDIUM,
    "mixed": SentenceLength.MEDIUM,
}


class StyleExtractor(Protocol):
    """Anything that can turn text into a ``StyleSample``."""

    async def extract(
        self,
        text: str,
        source_type: SourceType,
        *,
        source_id: Optional[str] = None,
        include_advanced: bool = False,
    ) -> StyleSample:
        ...


# ======================================================================
# PAYLOAD PARSING
# ======================================================================


def _coerce_enum(enum_cls: Type[Any], value: Any, default: Any, aliases: Dict[str, Any]) -> Any:
    key = str(value).strip().lower() if value is not None else ""
    try:
        return enum_cls(key)
    except ValueError:
        if key in aliases:
            return aliases[key]
        logger.warning(
            "Unknown %s value '%s' from extractor, using '%s'",
            enum_cls.__name__,
            value,
            default.value,
        )
        return default


def _coerce_terms(value: Any, field_name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        raise ContentUnanalyzableError(
            f"Extractor returned {type(value).__name__} for '{field_name}', expected list"
        )
    return normalize_terms([str(item) for item in value if item is not None])


def parse_style_payload(payload: Any, max_terms: int = 10) -> BasicStyle:
    """
    Build ``BasicStyle`` from the model's JSON.

    Raises:
        ContentUnanalyzableError: If the payload is not an object or lacks
            any of ``tone``, ``formality`` or ``sentenceLength``.
    """
    if not isinstance(payload, dict):
        raise ContentUnanalyzableError(
            f"Extractor returned {type(payload).__name__}, expected object"
        )
    if "sentenceLength" not in payload and "sentence_length" in payload:
        payload = dict(payload, sentenceLength=payload["sentence_length"])

    missing = [k for k in ("tone", "formality", "sentenceLength") if not payload.get(k)]
    if missing:
        raise ContentUnanalyzableError(f"Extractor output is missing {missing}")

    avoidance = [t for t in _coerce_terms(payload.get("avoidance"), "avoidance") if t != "none"]
    return BasicStyle(
        tone=_coerce_enum(Tone, payload["tone"], Tone.NEUTRAL, _TONE_ALIASES),
        formality=_coerce_enum(
            Formality, payload["formality"], Formality.BALANCED, _FORMALITY_ALIASES
        ),
        sentence_length=_coerce_enum(
            SentenceLength, payload["sentenceLength"], SentenceLength.MEDIUM, _SENTENCE_ALIASES
        ),
        vocabulary=_coerce_terms(payload.get("vocabulary"), "vocabulary")[:max_terms],
        avoidance=avoidance[:max_terms],
    )


def parse_advanced_payload(payload: Any) -> AdvancedStyle:
    """
    Build ``AdvancedStyle`` from the model's JSON.

    Malformed individual items are skipped with a warning; a payload that
    is not an object at all is rejected.

    Raises:
        ContentUnanalyzableError: If ``payload`` is not an object.
    """
    if not isinstance(payload, dict):
        raise ContentUnanalyzableError(
            f"Advanced analysis returned {type(payload).__name__}, expected object"
        )

    phrases: List[SignaturePhrase] = []
    for item in payload.get("signaturePhrases") or []:
        if not isinstance(item, dict) or not str(item.get("phrase", "")).strip():
            logger.warning("Skipping malformed phrase entry: %r", item)
            continue
        try:
            frequency = max(1, int(item.get("frequency", 1)))
        except (TypeError, ValueError):
            logger.warning("Skipping phrase with bad frequency: %r", item)
            continue
        phrases.append(
            SignaturePhrase(
                phrase=str(item["phrase"]).strip(),
                frequency=frequency,
                category=_coerce_enum(
                    PhraseCategory, item.get("category"), PhraseCategory.SIGNATURE, {}
                ),
            )
        )

    thought: Optional[ThoughtPatterns] = None
    raw_thought = payload.get("thoughtPatterns")
    if isinstance(raw_thought, dict):
        try:
            thought = ThoughtPatterns(
                flow_score=min(100.0, max(0.0, float(raw_thought.get("flowScore", 50)))),
                transition_style=_coerce_enum(
                    TransitionStyle,
                    raw_thought.get("transitionStyle"),
                    TransitionStyle.MIXED,
                    {},
                ),
                parenthetical_frequency=max(
                    0.0, float(raw_thought.get("parentheticalFrequency", 0))
                ),
            )
        except (TypeError, ValueError):
            logger.warning("Skipping malformed thoughtPatterns: %r", raw_thought)

    markers: List[PersonalityMarker] = []
    for item in payload.get("personalityMarkers") or []:
        if not isinstance(item, dict) or not str(item.get("text", "")).strip():
            logger.warning("Skipping malformed personality marker: %r", item)
            continue
        markers.append(
            PersonalityMarker(
                text=str(item["text"]).strip(),
                type=_coerce_enum(
                    MarkerType, item.get("type"), MarkerType.PERSONAL_CONTEXT, {}
                ),
                context=str(item.get("context", "")),
            )
        )

    contexts: Dict[str, ContextualStyle] = {}
    raw_contexts = payload.get("contextualVocabulary") or {}
    if isinstance(raw_contexts, dict):
        for name, ctx in raw_contexts.items():
            if not isinstance(ctx, dict):
                logger.warning("Skipping malformed context '%s': %r", name, ctx)
                continue
            contexts[str(name)] = ContextualStyle(
                vocabulary=_coerce_terms(ctx.get("vocabulary"), f"{name}.vocabulary"),
                tone=str(ctx.get("tone", "")).strip().lower(),
            )

    return AdvancedStyle(
        signature_phrases=phrases,
        thought_patterns=thought,
        personality_markers=markers,
        contextual_vocabulary=contexts,
    )


# ======================================================================
# CLAUDE-BACKED EXTRACTOR
# ======================================================================


class ClaudeStyleExtractor:
    """Extracts writing style with Claude.

    Args:
        claude_client: An async Claude API client instance.  When ``None``,
            a ``ClaudeClient`` for the configured model is created on first use.
        settings: Application settings; defaults to ``get_settings()``.
    """

    SYSTEM_PROMPT: str = (
        "You are a writing-style analyst. You describe how a person writes, "
        "never what they write about. Placeholders like [EMAIL], [PHONE], "
        "[URL] and [NAME] stand for redacted personal data; ignore them."
    )

    BASIC_PROMPT: str = """
    Analyze the writing style of the following {source_label} text
    ({word_count} words).

    Text:
    {text}

    Describe:
    1. TONE - conversational, professional, casual or neutral
    2. FORMALITY - casual, balanced or formal
    3. SENTENCE LENGTH - short, medium or long on average
    4. VOCABULARY - up to 10 short descriptors or characteristic words
    5. AVOIDANCE - up to 10 things this writer avoids ("none" if nothing)

    Return as JSON with these exact keys:
    {{
        "tone": "conversational|professional|casual|neutral",
        "formality": "casual|balanced|formal",
        "sentenceLength": "short|medium|long",
        "vocabulary": ["..."],
        "avoidance": ["..."]
    }}
    """

    ADVANCED_PROMPT: str = """
    Perform a deep style analysis of this text excerpt (part {chunk_index} of
    {chunk_count}).

    Text:
    {text}

    Extract:
    1. SIGNATURE PHRASES - recurring phrases with how often they appear,
       categorized as signature, transition or filler
    2. THOUGHT PATTERNS - flow score 0 (structured) to 100
       (stream-of-consciousness), transition style (abrupt, smooth, mixed),
       parenthetical asides per 1000 words
    3. PERSONALITY MARKERS - quoted snippets that are self-aware, humor or
       personal-context, with a short description
    4. CONTEXTUAL VOCABULARY - per context (e.g. "work", "casual"), up to 5
       characteristic words and the tone used there

    Return as JSON with these exact keys:
    {{
        "signaturePhrases": [{{"phrase": "...", "frequency": 1, "category": "signature"}}],
        "thoughtPatterns": {{"flowScore": 50, "transitionStyle": "mixed", "parentheticalFrequency": 0}},
        "personalityMarkers": [{{"text": "...", "type": "humor", "context": "..."}}],
        "contextualVocabulary": {{"work": {{"vocabulary": ["..."], "tone": "..."}}}}
    }}
    """

    def __init__(
        self,
        claude_client: Optional[ClaudeClient] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._claude: Optional[ClaudeClient] = claude_client

    @property
    def claude(self) -> ClaudeClient:
        """Created on first use."""
        if self._claude is None:
            self._claude = ClaudeClient(model=self.settings.llm_model)
        return self._claude

    async def extract(
        self,
        text: str,
        source_type: SourceType,
        *,
        source_id: Optional[str] = None,
        include_advanced: bool = False,
    ) -> StyleSample:
        """Extract a ``StyleSample`` from ``text``.

        Args:
            text: Raw source text.
            source_type: Origin of the text.
            source_id: Identifier to carry into the sample.
            include_advanced: Also run the chunked advanced analysis.

        Raises:
            ContentUnanalyzableError: Text too short or unusable output.
            ExtractionUnavailableError: Service unreachable after retries.
        """
        word_count = count_words(text)
        if word_count < self.settings.extraction_min_words:
            raise ContentUnanalyzableError(
                f"Text has {word_count} words; at least "
                f"{self.settings.extraction_min_words} are needed for analysis"
            )

        anonymized = anonymize_text(text)
        payload = await self._call(
            self.BASIC_PROMPT.format(
                source_label=source_type.value,
                word_count=word_count,
                text=anonymized,
            ),
            operation="basic style analysis",
        )
        basic = parse_style_payload(payload, self.settings.engine.merge.max_set_terms)

        advanced: Optional[AdvancedStyle] = None
        if include_advanced:
            advanced = await self._extract_advanced(anonymized)

        logger.info(
            "Extracted %s sample (%d words): tone=%s formality=%s advanced=%s",
            source_type.value,
            word_count,
            basic.tone.value,
            basic.formality.value,
            advanced is not None,
        )
        return StyleSample(
            source_type=source_type,
            word_count=word_count,
            basic=basic,
            advanced=advanced,
            source_id=source_id or generate_id(),
            text=text,
        )

    async def _extract_advanced(self, anonymized: str) -> AdvancedStyle:
        chunks = chunk_text(anonymized, self.settings.chunk_words)
        logger.debug("Advanced analysis over %d chunk(s)", len(chunks))

        payloads = await asyncio.gather(
            *[
                self._call(
                    self.ADVANCED_PROMPT.format(
                        chunk_index=i + 1, chunk_count=len(chunks), text=chunk
                    ),
                    operation=f"advanced analysis chunk {i + 1}/{len(chunks)}",
                )
                for i, chunk in enumerate(chunks)
            ]
        )
        analyses = [parse_advanced_payload(p) for p in payloads]
        if len(analyses) == 1:
            return analyses[0]

        merge_config: MergeConfig = self.settings.engine.merge
        merged = merge_advanced(
            [(analysis, float(count_words(chunk)), 1.0) for analysis, chunk in zip(analyses, chunks)],
            merge_config,
        )
        assert merged is not None
        return merged

    async def _call(self, prompt: str, operation: str) -> Dict[str, Any]:
        try:
            return await self.claude.generate_structured(
                prompt=prompt,
                system=self.SYSTEM_PROMPT,
                max_tokens=self.settings.extraction_max_tokens,
            )
        except RetryExhaustedError as exc:
            if isinstance(exc.last_error, (json.JSONDecodeError, ValueError, TypeError)):
                raise ContentUnanalyzableError(
                    f"{operation} returned unusable output: {exc.last_error}", cause=exc
                ) from exc
            raise ExtractionUnavailableError(
                f"{operation} failed: {exc.last_error}", cause=exc
            ) from exc


__all__ = [
    "StyleExtractor",
    "ClaudeStyleExtractor",
    "parse_style_payload",
    "parse_advanced_payload",
]
