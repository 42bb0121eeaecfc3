"""Custom exceptions for recipe_importer.

This module defines the hierarchy of pipeline-level failures. Field-level
schema problems are never raised; they are collected as ``ValidationIssue``
records by the response validator. Everything here is a terminal outcome of
an import call (or of a collaborator call that the retry layer gave up on).

Example:
    >>> try:
    ...     raise ExtractionExhaustedError("No strategy produced content", url="https://x.test")
    ... except RecipeImportError as e:
    ...     print(f"Import failed: {e}")
"""


class RecipeImportError(Exception):
    """Base exception for all recipe_importer errors.

    Attributes:
        message: Human-readable error description
        context: Additional context about where/when the error occurred
    """

    def __init__(self, message: str, **context: str | int | float | bool | None) -> None:
        """Initialize the exception with a message and optional context.

        Args:
            message: Human-readable error description
            **context: Additional context (e.g., stage="Parsing", attempts=3)
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format error message with context."""
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class InputValidationError(RecipeImportError):
    """Input rejected before any network or model call.

    Raised when:
    - Text is empty or too short to hold a recipe
    - A file has an unsupported MIME type or is too large
    - No url, text or file was supplied

    Example:
        >>> raise InputValidationError(
        ...     "Input rejected",
        ...     reasons=["Text is too short to contain a recipe"],
        ... )
    """

    def __init__(
        self,
        message: str,
        reasons: list[str] | None = None,
        **context: str | int | float | bool | None,
    ) -> None:
        self.reasons = list(reasons or [])
        if self.reasons and "reasons" not in context:
            context["reasons"] = "; ".join(self.reasons)
        super().__init__(message, **context)


class ConfigurationError(RecipeImportError):
    """Error in configuration or settings.

    Raised when:
    - Configuration file is invalid
    - Settings have invalid values
    - Environment variables are malformed

    Example:
        >>> raise ConfigurationError(
        ...     "Invalid validator strategy",
        ...     validator_strategy="fancy",
        ...     valid_strategies="basic, enhanced",
        ... )
    """

    pass


class ExtractionError(RecipeImportError):
    """A single extraction strategy or collaborator failed to yield content."""

    pass


class ExtractionExhaustedError(ExtractionError):
    """Every strategy in the fallback chain failed.

    Attributes:
        failures: ``(method, reason)`` pairs in the order strategies were tried

    Example:
        >>> raise ExtractionExhaustedError(
        ...     "All extraction strategies failed",
        ...     failures=[("html-scraping-desktop", "HTTP 403")],
        ...     url="https://example.com/recipe",
        ... )
    """

    def __init__(
        self,
        message: str,
        failures: list[tuple[str, str]] | None = None,
        **context: str | int | float | bool | None,
    ) -> None:
        self.failures = list(failures or [])
        if self.failures and "failures" not in context:
            context["failures"] = "; ".join(f"{m}: {r}" for m, r in self.failures)
        super().__init__(message, **context)


class InsufficientEvidenceError(ExtractionError):
    """Parsed recipe could not be bound to the source evidence.

    Raised when:
    - Token-fidelity filtering removed every ingredient or every step
    - Support rates stayed below the policy minimum and partial data is disallowed
    """

    pass


class RecipeValidationError(RecipeImportError):
    """Normalized recipe data violates the canonical recipe invariants.

    Example:
        >>> raise RecipeValidationError("Recipe has no ingredients", field="ingredients")
    """

    pass


class ParsingFailedAfterRetriesError(RecipeImportError):
    """The parsing orchestrator exhausted its attempts.

    Attributes:
        attempts: Number of attempts made
        last_error: The underlying cause of the final attempt
    """

    def __init__(
        self,
        attempts: int,
        last_error: BaseException | None,
        **context: str | int | float | bool | None,
    ) -> None:
        cause = str(last_error) if last_error is not None else "unknown error"
        super().__init__(f"Recipe parsing failed after {attempts} attempts: {cause}", **context)
        self.attempts = attempts
        self.last_error = last_error


class ImportAbstainError(RecipeImportError):
    """The model explicitly declined to produce a recipe.

    The string form starts with ``ImportAbstain:<source>:<reason>`` so callers
    can match on it without importing this class.

    Attributes:
        source: Evidence source the model was working from (text, ocr, video, ...)
        reason: Reason string returned by the model
        missing: Fields the model reported as missing
    """

    def __init__(
        self,
        source: str,
        reason: str,
        missing: list[str] | None = None,
        **context: str | int | float | bool | None,
    ) -> None:
        super().__init__(f"ImportAbstain:{source}:{reason}", **context)
        self.source = source
        self.reason = reason
        self.missing = list(missing or [])


class ServiceError(RecipeImportError):
    """A collaborator failed in a way that retrying cannot fix (e.g. HTTP 400/401)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        **context: str | int | float | bool | None,
    ) -> None:
        if status_code is not None:
            context.setdefault("status_code", status_code)
        super().__init__(message, **context)
        self.status_code = status_code


class RetryableError(RecipeImportError):
    """Error that might succeed if retried.

    Raised for rate limits (429), server errors (5xx), connection resets and
    timeouts.

    Attributes:
        attempt: Current attempt number (1-indexed)
        max_attempts: Maximum number of attempts allowed
        retry_after: Suggested delay before next retry (seconds)
    """

    def __init__(
        self,
        message: str,
        attempt: int = 1,
        max_attempts: int = 3,
        retry_after: float = 1.0,
        **context: str | int | float | bool | None,
    ) -> None:
        super().__init__(message, **context)
        self.attempt = attempt
        self.max_attempts = max_attempts
        self.retry_after = retry_after

    def __str__(self) -> str:
        """Format error with retry information."""
        base = super().__str__()
        return f"{base} [attempt {self.attempt}/{self.max_attempts}]"
