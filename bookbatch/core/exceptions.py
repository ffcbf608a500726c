"""
Exception hierarchy for the translation batch pipeline.

Structural errors (parsing, unsafe paths, missing endpoint configuration)
propagate to the caller. Per-unit errors (validation, healing, similarity)
are recovered locally and usually travel as Err values instead of being raised.
"""

from typing import Optional, Dict, Any, List


class BookBatchError(Exception):
    """Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error message
        context: Additional context about the error
        recoverable: Whether the error can potentially be recovered from
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        recoverable: bool = False
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"{self.__class__.__name__}: {self.message}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base += f" (context: {context_str})"
        return base


# ============================================================================
# Structural errors (fatal to their scope)
# ============================================================================

class ParseError(BookBatchError):
    """Raised when a source file cannot be parsed into a block tree.

    Attributes:
        path: Relative path of the offending file
        original_error: The underlying parsing error
        content_preview: First 200 chars of problematic content
    """

    def __init__(self, message: str, path: Optional[str] = None,
                 original_error: Optional[Exception] = None,
                 content_preview: Optional[str] = None):
        super().__init__(message, {"path": path} if path else None)
        self.path = path
        self.original_error = original_error
        self.content_preview = content_preview


class UnsafePathError(BookBatchError):
    """Raised when a document path escapes its session root."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message, {"path": path} if path else None)
        self.path = path


class MissingEndpointConfig(BookBatchError):
    """Raised when no usable model endpoint resolves for a usage type.

    Attributes:
        missing: Usage types that could not be resolved
    """

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message, {"missing": ", ".join(missing or [])})
        self.missing = missing or []


class MissingTranslationError(BookBatchError):
    """Raised when reassembly needs a translation that does not exist."""

    def __init__(self, message: str, unit_keys: Optional[List[str]] = None):
        super().__init__(message)
        self.unit_keys = unit_keys or []


class NotFoundError(BookBatchError):
    """Raised when a project, run, group or unit does not exist."""
    pass


# ============================================================================
# Per-unit errors (recovered locally)
# ============================================================================

class ModelCallError(BookBatchError):
    """Raised when every transport attempt against the model endpoints failed."""

    def __init__(self, message: str, endpoint: Optional[str] = None):
        super().__init__(message, {"endpoint": endpoint} if endpoint else None, recoverable=True)
        self.endpoint = endpoint


class PlaceholderValidationError(BookBatchError):
    """Raised when model output fails the structural schema.

    Attributes:
        expected_count: Expected number of translated items
        actual_count: Actual number of items returned
        missing_placeholders: Placeholder tokens absent from the output
    """

    def __init__(
        self,
        message: str,
        expected_count: Optional[int] = None,
        actual_count: Optional[int] = None,
        missing_placeholders: Optional[List[str]] = None
    ):
        super().__init__(message, recoverable=True)
        self.expected_count = expected_count
        self.actual_count = actual_count
        self.missing_placeholders = missing_placeholders or []


class HealingFailed(BookBatchError):
    """One or more source tags could not be located and had to be forged.

    Attributes:
        text: Best-effort healed text (never dropped)
        forged_tags: Ids of the tags that were force-inserted
    """

    def __init__(self, text: str, forged_tags: Optional[List[str]] = None):
        super().__init__("Healing failed", {"forged": ", ".join(forged_tags or [])}, recoverable=True)
        self.text = text
        self.forged_tags = forged_tags or []


class SimilarityViolation(BookBatchError):
    """Translation is abnormally close to its source.

    Attributes:
        level: "medium" or "high"
        ratio: Normalized similarity ratio in [0, 1]
    """

    def __init__(self, level: str, ratio: float, threshold: float):
        super().__init__(f"Similarity >= {int(round(threshold * 100))}%",
                         {"level": level, "ratio": f"{ratio:.3f}"}, recoverable=True)
        self.level = level
        self.ratio = ratio
        self.threshold = threshold
