"""
Writing-style engine for DigitalMe.

Builds a unified writing-style profile from several sources and refines it
from new conversation.

- ``score_quality``: Quality Scorer, one weight per source sample.
- ``merge_samples``: Merge Engine, weighted vote over samples.
- ``compute_confidence``: Confidence Model, from volume and diversity.
- ``ProfileRefiner``: incremental updates from message batches.
- ``ClaudeStyleExtractor``: per-source extraction with Claude.
- ``ProfileStore`` / ``StyleProfileAgent``: stored profiles and the
  service façade around the engine.
- ``SourceImporter``: loads adapter output and batches from files.
"""

from digitalme.style.quality import score_quality, score_sample
from digitalme.style.merge import merge_samples, merge_advanced
from digitalme.style.confidence import compute_confidence, ConfidenceInputs
from digitalme.style.profile_builder import build_style_profile, score_samples
from digitalme.style.refiner import ProfileRefiner, apply_refinement, validate_batch
from digitalme.style.extractor import ClaudeStyleExtractor, StyleExtractor
from digitalme.style.store import ProfileStore
from digitalme.style.profile_agent import StyleProfileAgent
from digitalme.style.source_importer import SourceImporter

__all__ = [
    "score_quality",
    "score_sample",
    "merge_samples",
    "merge_advanced",
    "compute_confidence",
    "ConfidenceInputs",
    "build_style_profile",
    "score_samples",
    "ProfileRefiner",
    "apply_refinement",
    "validate_batch",
    "ClaudeStyleExtractor",
    "StyleExtractor",
    "ProfileStore",
    "StyleProfileAgent",
    "SourceImporter",
]
