"""
Style Profile Agent: the service façade of the DigitalMe engine.

Workflow:
    1. Source adapters produce ``SourceDocument`` objects.
    2. ``build_profile()`` extracts a ``StyleSample`` per document, scores
       the samples, merges them and attaches confidence.
    3. ``add_source()`` / ``remove_source()`` re-merge every remaining
       sample from scratch.
    4. ``refine()`` applies conversation batches as they arrive.

Expected conditions (bad input, no usable data, extractor failures) are
returned as ``ProfileBuildResult`` / ``RefinementResult`` values.
``InvariantViolationError`` signals corrupted state and propagates, as
does ``ProfileNotFoundError`` for an unknown id.

All operations on a stored profile run under its store lock, so
concurrent refinements of one profile apply in submission order and
never interleave with a re-merge.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, List, Optional, Sequence

from digitalme.config import StyleEngineConfig, get_settings
from digitalme.exceptions import (
    ExtractionError,
    InsufficientQualityDataError,
    ProfileVersionConflictError,
    ValidationError,
)
from digitalme.logging import ComponentLogger
from digitalme.models import (
    DeltaReport,
    ErrorInfo,
    OutcomeStatus,
    ProfileBuildResult,
    RefinementResult,
    SourceDocument,
    StyleProfile,
    StyleSample,
)
from digitalme.style.extractor import ClaudeStyleExtractor, StyleExtractor
from digitalme.style.profile_builder import build_style_profile, score_samples
from digitalme.style.refiner import ProfileRefiner
from digitalme.style.store import ProfileEntry, ProfileStore

logger = logging.getLogger("StyleProfileAgent")


def _failed(exc: Exception, profile: Optional[StyleProfile] = None) -> ProfileBuildResult:
    return ProfileBuildResult(
        status=OutcomeStatus.FAILED, profile=profile, error=ErrorInfo.from_exception(exc)
    )


class StyleProfileAgent:
    """Builds, re-merges and refines writing-style profiles.

    Args:
        extractor: Style extractor; a ``ClaudeStyleExtractor`` is created
            when ``None``.
        config: Engine configuration; defaults to the one in settings.
        store: Profile store; a new in-memory store when ``None``.
        events: Optional structured event logger.
    """

    def __init__(
        self,
        extractor: Optional[StyleExtractor] = None,
        config: Optional[StyleEngineConfig] = None,
        store: Optional[ProfileStore] = None,
        events: Optional[ComponentLogger] = None,
    ) -> None:
        settings = get_settings()
        self.extractor: StyleExtractor = extractor or ClaudeStyleExtractor(settings=settings)
        self.config = config or settings.engine
        self.store = store or ProfileStore(ttl_seconds=settings.profile_ttl_seconds)
        self.refiner = ProfileRefiner(self.extractor, self.config)
        self.events = events

    async def _event(self, level: str, message: str, **kwargs: Any) -> None:
        if self.events is not None:
            await getattr(self.events, level)(message, **kwargs)

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    async def extract_samples(
        self, documents: Sequence[SourceDocument], include_advanced: bool = False
    ) -> List[StyleSample]:
        """
        Extract one sample per document, concurrently.

        Documents with zero words carry no weight and are skipped. The
        adapter's word count is kept on the sample.

        Raises:
            ExtractionError: The first extraction failure, in input order.
        """
        usable = [doc for doc in documents if doc.word_count > 0]
        skipped = len(documents) - len(usable)
        if skipped:
            logger.info("Skipping %d empty source(s)", skipped)

        results = await asyncio.gather(
            *[
                self.extractor.extract(
                    doc.raw_text,
                    doc.source_type,
                    source_id=doc.source_id,
                    include_advanced=include_advanced,
                )
                for doc in usable
            ],
            return_exceptions=True,
        )

        samples: List[StyleSample] = []
        for doc, result in zip(usable, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Extraction failed for %s source %s: %s",
                    doc.source_type.value,
                    doc.source_id,
                    result,
                )
                raise result
            result.source_id = doc.source_id
            result.word_count = doc.word_count
            samples.append(result)
        return samples

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def build_profile_from_samples(
        self,
        samples: Sequence[StyleSample],
        user_id: str = "",
        previous: Optional[StyleProfile] = None,
    ) -> ProfileBuildResult:
        """Score and merge already-extracted samples. Nothing is stored."""
        weighted = score_samples(samples, self.config)
        assessments = {ws.sample.source_id: ws.assessment for ws in weighted}
        try:
            profile = build_style_profile(
                weighted, user_id=user_id, config=self.config, previous=previous
            )
        except (ValidationError, InsufficientQualityDataError) as exc:
            logger.warning("Profile build failed: %s", exc)
            result = _failed(exc, previous)
            result.assessments = assessments
            return result
        return ProfileBuildResult(
            status=OutcomeStatus.SUCCESS, profile=profile, assessments=assessments
        )

    async def build_profile(
        self,
        documents: Sequence[SourceDocument],
        user_id: str = "",
        include_advanced: bool = False,
    ) -> ProfileBuildResult:
        """
        Build a profile from source documents and store it.

        Returns:
            ``SUCCESS`` with the stored profile, or ``FAILED`` with
            ``validation_error``, ``insufficient_quality_data`` or
            ``extraction_failure``.
        """
        if not documents:
            return _failed(ValidationError("no sources to merge"))
        try:
            samples = await self.extract_samples(documents, include_advanced)
        except ExtractionError as exc:
            await self._event("error", "Profile build failed", error=exc)
            return _failed(exc)
        if not samples:
            return _failed(InsufficientQualityDataError("every source is empty"))

        result = self.build_profile_from_samples(samples, user_id)
        if result.ok:
            assert result.profile is not None
            self.store.evict_expired()
            self.store.create(result.profile, samples)
            await self._event(
                "info",
                "Profile built",
                profile_id=result.profile.profile_id,
                data={
                    "sources": len(samples),
                    "words": result.profile.sample_count.total_words,
                    "confidence": result.profile.confidence,
                },
            )
        else:
            assert result.error is not None
            await self._event("warning", f"Profile build failed: {result.error.code}")
        return result

    def get_profile(self, profile_id: str) -> StyleProfile:
        return self.store.get(profile_id)

    # ------------------------------------------------------------------
    # Source changes (full re-merge)
    # ------------------------------------------------------------------

    async def add_source(
        self,
        profile_id: str,
        document: SourceDocument,
        include_advanced: bool = False,
    ) -> ProfileBuildResult:
        """Extract ``document`` and re-merge it with the existing sources."""
        async with self.store.lock(profile_id) as entry:
            current = copy.deepcopy(entry.profile)
            if any(s.source_id == document.source_id for s in entry.samples):
                return _failed(
                    ValidationError(f"source '{document.source_id}' is already merged"), current
                )
            try:
                new_samples = await self.extract_samples([document], include_advanced)
            except ExtractionError as exc:
                await self._event("error", "Add source failed", profile_id=profile_id, error=exc)
                return _failed(exc, current)

            samples = entry.samples + new_samples
            result = self._remerge(entry, current, samples)
            await self._event(
                "info" if result.ok else "warning",
                f"Source {document.source_id} added" if result.ok else "Add source failed",
                profile_id=profile_id,
                data={"source_type": document.source_type.value, "words": document.word_count},
            )
            return result

    async def remove_source(self, profile_id: str, source_id: str) -> ProfileBuildResult:
        """Drop one source and re-merge the rest."""
        async with self.store.lock(profile_id) as entry:
            current = copy.deepcopy(entry.profile)
            remaining = [s for s in entry.samples if s.source_id != source_id]
            if len(remaining) == len(entry.samples):
                return _failed(ValidationError(f"unknown source '{source_id}'"), current)

            result = self._remerge(entry, current, remaining)
            await self._event(
                "info" if result.ok else "warning",
                f"Source {source_id} removed" if result.ok else "Remove source failed",
                profile_id=profile_id,
            )
            return result

    def _remerge(
        self, entry: ProfileEntry, current: StyleProfile, samples: List[StyleSample]
    ) -> ProfileBuildResult:
        result = self.build_profile_from_samples(samples, previous=current)
        if result.ok:
            assert result.profile is not None
            self.store.commit(entry, result.profile, current.version, samples=samples)
            result.profile = copy.deepcopy(result.profile)
        return result

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------

    async def refine_profile(self, profile: StyleProfile, messages: Any) -> RefinementResult:
        """Refine a copy of ``profile``; the argument is never modified."""
        return await self.refiner.refine(copy.deepcopy(profile), messages)

    async def refine(self, profile_id: str, messages: Any) -> RefinementResult:
        """
        Refine a stored profile.

        Batches for the same profile wait for each other and apply in
        submission order.
        """
        async with self.store.lock(profile_id) as entry:
            base_version = entry.profile.version
            result = await self.refiner.refine(copy.deepcopy(entry.profile), messages)
            if result.applied:
                try:
                    self.store.commit(entry, result.profile, base_version)
                except ProfileVersionConflictError as exc:
                    logger.error("Refinement of %s discarded: %s", profile_id, exc)
                    return RefinementResult(
                        status=OutcomeStatus.FAILED,
                        profile=copy.deepcopy(entry.profile),
                        delta=DeltaReport(timestamp=result.delta.timestamp),
                        error=ErrorInfo.from_exception(exc),
                    )
                result.profile = copy.deepcopy(result.profile)

        await self._log_refinement(profile_id, result)
        return result

    async def _log_refinement(self, profile_id: str, result: RefinementResult) -> None:
        if result.status is OutcomeStatus.SUCCESS:
            await self._event(
                "info",
                "Refinement applied",
                profile_id=profile_id,
                data={
                    "words": result.delta.words_analyzed,
                    "changes": len(result.delta.changes),
                    "confidence_change": result.delta.confidence_change,
                    "version": result.profile.version,
                },
            )
        elif result.status is OutcomeStatus.NO_OP:
            await self._event(
                "debug", "Refinement skipped", profile_id=profile_id, data={"reason": result.reason}
            )
        else:
            assert result.error is not None
            await self._event(
                "warning",
                f"Refinement failed: {result.error.code}",
                profile_id=profile_id,
                data=result.error.to_dict(),
            )


__all__ = [
    "StyleProfileAgent",
]
