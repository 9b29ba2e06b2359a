"""
Custom exception classes for the DigitalMe style-profile engine.

Exceptions follow the fail-fast philosophy: no fallbacks, surface errors
immediately with clear context for debugging.  The pure engine functions
raise these; ``StyleProfileAgent`` converts the expected ones into explicit
result values so callers never have to catch them for ordinary outcomes.

Hierarchy:
    Exception
    +-- StyleEngineError (base for expected engine conditions)
    |   +-- InsufficientQualityDataError
    |   +-- ExtractionError
    |   |   +-- ExtractionUnavailableError   (retryable)
    |   |   +-- ContentUnanalyzableError     (not retryable)
    |   +-- ProfileNotFoundError
    |   +-- ProfileVersionConflictError
    +-- ValidationError (ValueError)
    |   +-- BatchValidationError
    |   +-- ProfileSchemaError
    +-- ConfigurationError
    +-- RetryExhaustedError
    +-- InvariantViolationError (hard fault, never returned as a value)
"""

from typing import List, Optional


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class StyleEngineError(Exception):
    """Base exception for expected style-engine conditions.

    Attributes:
        code: Stable machine-readable identifier carried into result values.
    """

    code: str = "style_engine_error"


# =============================================================================
# CORE EXCEPTIONS
# =============================================================================


class ValidationError(ValueError):
    """Raised when input validation fails."""

    code: str = "validation_error"


class ConfigurationError(Exception):
    """Raised when engine configuration is invalid."""

    pass


class RetryExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        operation: Name of the operation that was retried.
        attempts: Total number of attempts made.
        last_error: The last exception raised before giving up.
    """

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts. "
            f"Last error: {last_error}"
        )


class InvariantViolationError(Exception):
    """Raised when internal profile state breaks a structural invariant.

    This signals a programming error or corrupted state, so it is never
    converted into a result value.
    """

    pass


# =============================================================================
# MERGE / PROFILE EXCEPTIONS
# =============================================================================


class InsufficientQualityDataError(StyleEngineError):
    """Raised when merge input carries zero usable quality weight."""

    code = "insufficient_quality_data"


class ProfileNotFoundError(StyleEngineError):
    """Raised when a profile id is unknown to the store."""

    code = "profile_not_found"

    def __init__(self, profile_id: str):
        self.profile_id = profile_id
        super().__init__(f"Profile '{profile_id}' not found")


class ProfileVersionConflictError(StyleEngineError):
    """Raised when a commit is based on a stale profile version.

    Attributes:
        profile_id: Id of the conflicting profile.
        expected_version: Version the writer read.
        actual_version: Version currently stored.
    """

    code = "version_conflict"

    def __init__(self, profile_id: str, expected_version: int, actual_version: int):
        self.profile_id = profile_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Profile '{profile_id}' changed: expected version "
            f"{expected_version}, found {actual_version}"
        )


# =============================================================================
# EXTRACTION EXCEPTIONS
# =============================================================================


class ExtractionError(StyleEngineError):
    """Raised when the style extractor fails or returns unusable output.

    Attributes:
        retryable: ``True`` when the failure is transient (service
            unavailable) and the caller may try again later.
    """

    code = "extraction_failure"
    retryable: bool = False

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)


class ExtractionUnavailableError(ExtractionError):
    """The text-analysis service could not be reached or kept failing."""

    retryable = True


class ContentUnanalyzableError(ExtractionError):
    """The text cannot be analyzed (too short, or unusable model output)."""

    retryable = False


# =============================================================================
# VALIDATION EXCEPTIONS
# =============================================================================


class BatchValidationError(ValidationError):
    """Raised when a refinement batch breaks the input contract.

    Attributes:
        issues: List of validation issues found.
    """

    def __init__(self, issues: List[str]):
        self.issues = issues
        super().__init__(f"Refinement batch rejected: {issues}")


class ProfileSchemaError(ValidationError):
    """Raised when serialized profile data has the wrong shape.

    Attributes:
        path: Dotted location of the offending field.
    """

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Base
    "StyleEngineError",
    # Core
    "ValidationError",
    "ConfigurationError",
    "RetryExhaustedError",
    "InvariantViolationError",
    # Merge / profile
    "InsufficientQualityDataError",
    "ProfileNotFoundError",
    "ProfileVersionConflictError",
    # Extraction
    "ExtractionError",
    "ExtractionUnavailableError",
    "ContentUnanalyzableError",
    # Validation
    "BatchValidationError",
    "ProfileSchemaError",
]
