"""
Centralized configuration for the DigitalMe style-profile engine.

Every weight, band and threshold used by the quality scorer, merge engine,
confidence model and refiner lives here so they can be tuned without
touching engine logic.

Provides:
    - QualityConfig: source priors, quantity bands, anomaly thresholds
    - MergeConfig: caps on merged set and advanced attributes
    - ConfidenceConfig: word-count bands, bonuses, penalties, ceiling
    - RefinementConfig: batch limits, movement tiers, switch thresholds
    - StyleEngineConfig: aggregate of the four engine configs
    - Settings: application settings loaded from YAML + env vars
    - get_settings(): cached singleton accessor for Settings
    - validate_env(): startup validation of required environment variables
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

from digitalme.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Load .env file (no-op if file does not exist)
# ---------------------------------------------------------------------------
load_dotenv()

# ---------------------------------------------------------------------------
# Project root directory (parent of digitalme/)
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)


def _apply_env_overrides(
    target: Any, env_overrides: Dict[str, Tuple[str, Any]]
) -> None:
    """Set dataclass attributes from environment variables when present.

    Raises:
        ConfigurationError: If a variable is set but cannot be cast.
    """
    for env_key, (attr_name, cast_fn) in env_overrides.items():
        env_val = os.environ.get(env_key)
        if env_val is not None:
            try:
                setattr(target, attr_name, cast_fn(env_val))
            except (ValueError, TypeError) as exc:
                raise ConfigurationError(
                    f"Invalid value for env var {env_key}='{env_val}': {exc}"
                ) from exc


def _require_fraction(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{name} must be within [0, 1], got {value}")


# ===========================================================================
# QUALITY SCORER CONFIGURATION
# ===========================================================================


@dataclass
class QualityConfig:
    """
    Source trust priors, quantity bands and anomaly thresholds.

    Keys of ``source_priors`` are ``SourceType`` values (strings) for
    JSON/YAML compatibility.

    Usage::

        config = QualityConfig()
        prior = config.get_prior("gmail")       # 1.0
        mult = config.get_quantity_multiplier(600)  # 1.0
    """

    source_priors: Dict[str, float] = field(default_factory=lambda: {
        "gmail": 1.0,
        "text": 0.85,
        "conversation": 0.85,  # treated like user-provided text
        "github": 0.7,
        "blog": 0.65,
    })

    # Quantity bands are lower-inclusive: 500 and 1500 fall in the higher band
    medium_band_min_words: int = 500
    large_band_min_words: int = 1500
    small_multiplier: float = 0.5
    medium_multiplier: float = 1.0
    large_multiplier: float = 1.5

    # Spam / duplicate-sentence check
    spam_duplicate_ratio: float = 0.30
    spam_penalty: float = 0.5
    min_sentence_chars: int = 10
    min_sentences_for_spam_check: int = 5

    # Vocabulary diversity check
    diversity_floor: float = 0.15
    diversity_penalty: float = 0.7
    min_token_length: int = 4
    min_tokens_for_diversity_check: int = 50

    def __post_init__(self) -> None:
        """Override anomaly thresholds from environment variables if set."""
        _apply_env_overrides(self, {
            "DM_SPAM_DUPLICATE_RATIO": ("spam_duplicate_ratio", float),
            "DM_DIVERSITY_FLOOR": ("diversity_floor", float),
        })
        _require_fraction("spam_duplicate_ratio", self.spam_duplicate_ratio)
        _require_fraction("diversity_floor", self.diversity_floor)

    def get_prior(self, source_type: Any) -> float:
        """
        Get the fixed trust prior for a source type.

        Args:
            source_type: ``SourceType`` enum or its string value.

        Raises:
            ValueError: If the source type is unknown (fail-fast).
        """
        key = source_type.value if hasattr(source_type, "value") else str(source_type)
        if key not in self.source_priors:
            raise ValueError(
                f"Unknown source type '{key}'. "
                f"Valid types: {list(self.source_priors.keys())}"
            )
        return self.source_priors[key]

    def get_quantity_multiplier(self, word_count: int) -> float:
        """Map a word count onto its quantity band multiplier."""
        if word_count >= self.large_band_min_words:
            return self.large_multiplier
        if word_count >= self.medium_band_min_words:
            return self.medium_multiplier
        return self.small_multiplier

    @property
    def max_weight(self) -> float:
        return max(self.source_priors.values()) * self.large_multiplier


# ===========================================================================
# MERGE CONFIGURATION
# ===========================================================================


@dataclass
class MergeConfig:
    """Caps applied to merged set-valued and advanced attributes."""

    max_set_terms: int = 10
    max_signature_phrases: int = 10
    max_personality_markers: int = 10
    max_context_vocabulary: int = 5
    max_contexts: int = 10


# ===========================================================================
# CONFIDENCE CONFIGURATION
# ===========================================================================


@dataclass
class ConfidenceConfig:
    """
    Word-count bands and adjustments for the confidence curve.

    Each band is ``(lower_words, upper_words, start_confidence,
    end_confidence)``; confidence is interpolated linearly inside a band.
    The last band's upper bound is the saturation point after which
    confidence stays flat.
    """

    bands: List[Tuple[int, int, float, float]] = field(default_factory=lambda: [
        (0, 100, 0.05, 0.20),
        (100, 500, 0.20, 0.35),
        (500, 1500, 0.35, 0.55),
        (1500, 3000, 0.55, 0.70),
        (3000, 5000, 0.70, 0.80),
        (5000, 10000, 0.80, 0.88),
        (10000, 20000, 0.88, 0.92),
    ])

    multi_type_bonus: float = 0.03
    multi_source_bonus: float = 0.03
    advanced_bonus: float = 0.02
    spam_penalty_factor: float = 0.50
    low_diversity_penalty_factor: float = 0.30
    ceiling: float = 0.95

    def __post_init__(self) -> None:
        previous_end = None
        for lower, upper, start, end in self.bands:
            if upper <= lower or end < start:
                raise ConfigurationError(
                    f"Confidence band ({lower}, {upper}, {start}, {end}) is not increasing"
                )
            if previous_end is not None and start < previous_end:
                raise ConfigurationError(
                    f"Confidence band starting at {lower} words drops below the previous band"
                )
            previous_end = end
        _require_fraction("ceiling", self.ceiling)


# ===========================================================================
# REFINEMENT CONFIGURATION
# ===========================================================================


@dataclass
class RefinementConfig:
    """
    Batch contract and movement rules for incremental refinement.

    ``movement_tiers`` is an ordered list of ``(confidence_below,
    allotment)``; the first tier whose bound exceeds the attribute
    confidence applies, ``high_confidence_allotment`` otherwise.
    """

    max_messages: int = 50
    max_message_chars: int = 5000
    max_batch_chars: int = 50000
    min_words: int = 10

    movement_tiers: List[Tuple[float, float]] = field(default_factory=lambda: [
        (0.5, 0.20),
        (0.8, 0.10),
    ])
    high_confidence_allotment: float = 0.05
    full_effect_words: int = 500

    # Enum attributes switch once scaled movement reaches this share of
    # the tier allotment and the absolute floor for the attribute's
    # confidence (same ordered layout as movement_tiers)
    enum_switch_ratio: float = 0.5
    enum_switch_floors: List[Tuple[float, float]] = field(default_factory=lambda: [
        (0.8, 0.03),
    ])
    high_confidence_switch_floor: float = 0.04

    # A new set term is added when scaled movement x relevance reaches this
    set_inclusion_bar: float = 0.02

    # attributeConfidence increase per unit of scaled movement
    confidence_gain: float = 0.25

    def __post_init__(self) -> None:
        """Override the switch threshold from the environment if set."""
        _apply_env_overrides(self, {
            "DM_ENUM_SWITCH_RATIO": ("enum_switch_ratio", float),
        })
        _require_fraction("enum_switch_ratio", self.enum_switch_ratio)
        for _, floor in self.enum_switch_floors:
            _require_fraction("enum_switch_floors", floor)
        _require_fraction("high_confidence_switch_floor", self.high_confidence_switch_floor)
        if self.min_words < 1:
            raise ConfigurationError("min_words must be positive")


# ===========================================================================
# AGGREGATE ENGINE CONFIGURATION
# ===========================================================================


@dataclass
class StyleEngineConfig:
    """Single source of truth passed to every engine component."""

    quality: QualityConfig = field(default_factory=QualityConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)
    confidence: ConfidenceConfig = field(default_factory=ConfidenceConfig)
    refinement: RefinementConfig = field(default_factory=RefinementConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StyleEngineConfig":
        """
        Build a config from a nested dict (e.g. the ``engine`` YAML section).

        Unknown keys are rejected so typos do not silently fall back to
        defaults.

        Raises:
            ConfigurationError: On unknown sections or keys.
        """
        sections = {
            "quality": QualityConfig,
            "merge": MergeConfig,
            "confidence": ConfidenceConfig,
            "refinement": RefinementConfig,
        }
        kwargs: Dict[str, Any] = {}
        for name, section in (data or {}).items():
            if name not in sections:
                raise ConfigurationError(
                    f"Unknown engine config section '{name}'. "
                    f"Valid sections: {list(sections.keys())}"
                )
            config_cls = sections[name]
            valid = {f.name for f in fields(config_cls)}
            unknown = set(section or {}) - valid
            if unknown:
                raise ConfigurationError(
                    f"Unknown keys in engine.{name}: {sorted(unknown)}"
                )
            values = dict(section or {})
            if "bands" in values:
                values["bands"] = [tuple(band) for band in values["bands"]]
            for key in ("movement_tiers", "enum_switch_floors"):
                if key in values:
                    values[key] = [tuple(t) for t in values[key]]
            kwargs[name] = config_cls(**values)
        return cls(**kwargs)


# ===========================================================================
# GLOBAL SETTINGS
# ===========================================================================


@dataclass
class Settings:
    """
    Global application settings.

    Loaded from ``config/settings.yaml`` when available, falling back to
    defaults. Environment variables override YAML values for
    deployment-specific configuration.
    """

    # LLM settings (style extraction)
    llm_model: str = "claude-sonnet-4-5"
    extraction_max_tokens: int = 2048
    extraction_min_words: int = 10
    chunk_words: int = 2000

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    # Profile store
    profile_ttl_seconds: int = 3600

    engine: StyleEngineConfig = field(default_factory=StyleEngineConfig)

    @classmethod
    def from_yaml(cls, path: Optional[Path] = None) -> "Settings":
        """
        Load settings from a YAML file.

        If the file does not exist, returns an instance with all defaults.

        Args:
            path: Path to the YAML file. Defaults to
                ``<PROJECT_ROOT>/config/settings.yaml``.

        Raises:
            ConfigurationError: If the YAML file exists but cannot be parsed.
        """
        path = path or PROJECT_ROOT / "config" / "settings.yaml"

        data: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    f"Failed to parse settings YAML at {path}: {exc}"
                ) from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings YAML at {path} must be a mapping")

        engine = StyleEngineConfig.from_dict(data.get("engine", {}))

        settings = cls(
            llm_model=data.get("llm_model", cls.llm_model),
            extraction_max_tokens=int(data.get("extraction_max_tokens", cls.extraction_max_tokens)),
            extraction_min_words=int(data.get("extraction_min_words", cls.extraction_min_words)),
            chunk_words=int(data.get("chunk_words", cls.chunk_words)),
            log_level=data.get("log_level", cls.log_level),
            log_dir=data.get("log_dir", cls.log_dir),
            profile_ttl_seconds=int(data.get("profile_ttl_seconds", cls.profile_ttl_seconds)),
            engine=engine,
        )
        _apply_env_overrides(settings, {
            "DM_LLM_MODEL": ("llm_model", str),
            "DM_LOG_LEVEL": ("log_level", str),
            "DM_LOG_DIR": ("log_dir", str),
            "DM_PROFILE_TTL_SECONDS": ("profile_ttl_seconds", int),
        })
        return settings


# ===========================================================================
# SINGLETON SETTINGS ACCESSOR
# ===========================================================================

_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global Settings singleton.

    On first call, loads from ``config/settings.yaml`` (or defaults).
    Subsequent calls return the cached instance.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings.from_yaml()
    return _settings_instance


def reset_settings() -> None:
    """Reset the cached Settings singleton (used by tests)."""
    global _settings_instance
    _settings_instance = None


# ===========================================================================
# ENVIRONMENT VARIABLE VALIDATION
# ===========================================================================

REQUIRED_ENV_VARS: List[str] = [
    "ANTHROPIC_API_KEY",
]

OPTIONAL_ENV_VARS: List[str] = [
    "DM_LLM_MODEL",
    "DM_LOG_LEVEL",
    "DM_LOG_DIR",
    "DM_PROFILE_TTL_SECONDS",
    "DM_SPAM_DUPLICATE_RATIO",
    "DM_DIVERSITY_FLOOR",
    "DM_ENUM_SWITCH_RATIO",
]


def validate_env(strict: bool = True) -> Dict[str, bool]:
    """
    Validate that required environment variables are set.

    Args:
        strict: If ``True``, raise ``ConfigurationError`` when any required
            variable is missing. If ``False``, return the status dict
            without raising.

    Returns:
        Dict mapping variable name to presence status.

    Raises:
        ConfigurationError: If ``strict=True`` and required vars are missing.
    """
    status: Dict[str, bool] = {}
    missing: List[str] = []

    for var in REQUIRED_ENV_VARS:
        present = bool(os.environ.get(var))
        status[var] = present
        if not present:
            missing.append(var)

    for var in OPTIONAL_ENV_VARS:
        status[var] = bool(os.environ.get(var))

    if strict and missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )
    if missing:
        logger.warning("Missing required environment variables: %s", missing)
    return status


# ===========================================================================
# PUBLIC API
# ===========================================================================

__all__ = [
    "QualityConfig",
    "MergeConfig",
    "ConfidenceConfig",
    "RefinementConfig",
    "StyleEngineConfig",
    "Settings",
    "get_settings",
    "reset_settings",
    "validate_env",
    "REQUIRED_ENV_VARS",
    "OPTIONAL_ENV_VARS",
    "PROJECT_ROOT",
]
