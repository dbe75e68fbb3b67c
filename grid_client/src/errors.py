"""
Error taxonomy for the EnergyGrid client.

Two families live here. ``InvalidArgumentError`` signals a malformed batch
plan (bad serial count or batch size) and is fatal to the whole run.
``RequestError`` and its subclasses describe a single failed attempt against
the query endpoint; the executor catches them and turns them into
``BatchFailure`` outcomes so that one bad batch never aborts the run.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

from grid_client.src.models import FailureKind


class GridClientError(Exception):
    """Base class for all EnergyGrid client errors."""


class InvalidArgumentError(GridClientError, ValueError):
    """A pure helper (serial generator, batcher) received invalid input."""


# ---------------------------------------------------------------------------
# Per-attempt request errors
# ---------------------------------------------------------------------------


class RequestError(GridClientError):
    """A single request attempt failed.

    Args:
        message: Human-readable description of the failure.
        status_code: HTTP status returned by the endpoint, or ``None`` for
            network-level errors.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(RequestError):
    """The endpoint rejected the signature. Never retried."""


class RecoverableRequestError(RequestError):
    """An attempt failed in a way that a later attempt may fix."""

    exhausted_kind: FailureKind = FailureKind.TRANSIENT_EXHAUSTED


class RateLimitExceededError(RecoverableRequestError):
    """The endpoint answered HTTP 429.

    Args:
        message: Human-readable description of the failure.
        status_code: HTTP status (normally 429).
        retry_after_s: Parsed ``Retry-After`` header in seconds, if any.
    """

    exhausted_kind = FailureKind.RATE_LIMIT_EXHAUSTED

    def __init__(
        self,
        message: str,
        status_code: int | None = 429,
        retry_after_s: float | None = None,
    ) -> None:
        super().__init__(message, status_code)
        self.retry_after_s = retry_after_s


class TransientRequestError(RecoverableRequestError):
    """Server error, network error, or malformed success body."""


class RetryBudgetExhaustedError(RequestError):
    """Every allowed attempt failed with a recoverable error.

    Wraps the last recoverable error so the outcome can be classified by
    what kept failing.

    Args:
        last_error: The recoverable error raised by the final attempt.
        attempts: Total number of attempts made.
    """

    def __init__(self, last_error: RecoverableRequestError, attempts: int) -> None:
        super().__init__(
            f"{last_error} (gave up after {attempts} attempts)",
            last_error.status_code,
        )
        self.last_error = last_error
        self.attempts = attempts

    @property
    def kind(self) -> FailureKind:
        """Failure classification derived from the wrapped error."""
        return self.last_error.exhausted_kind
