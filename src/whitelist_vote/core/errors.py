"""Error taxonomy shared by the voting and reputation engine.

Terminal errors (not found, invalid state, duplicate, not eligible) are raised
to the caller untouched and are never retried. ``TransientStoreError`` is the
only retryable class and only surfaces once the retry policy gives up.
``ExternalServiceError`` is reported as a warning after the core decision has
already been committed.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every error the engine reports to its callers."""

    code = "engine_error"
    default_message = "The request could not be completed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(EngineError):
    """Raised when a referenced user or application does not exist."""

    code = "not_found"
    default_message = "Not found"


class InvalidStateError(EngineError):
    """Raised when an operation is illegal for the entity's current status."""

    code = "invalid_state"
    default_message = "Operation is not allowed in the current state"


class ApplicationNotVotableError(InvalidStateError):
    """Raised when a vote targets an application outside its voting window."""

    code = "application_not_votable"
    default_message = "This application is not open for voting"


class DuplicateError(EngineError):
    """Raised when a uniqueness invariant would be violated."""

    code = "duplicate"
    default_message = "Duplicate request"


class DuplicateApplicationError(DuplicateError):
    code = "duplicate_application"
    default_message = "You already have an application under review"


class AlreadyVotedError(DuplicateError):
    code = "already_voted"
    default_message = "You have already voted on this application"


class AlreadyAnsweredError(DuplicateError):
    code = "already_answered"
    default_message = "This question has already been answered"


class NotEligibleError(EngineError):
    """Raised when the actor lacks the role or permission for an action."""

    code = "not_eligible"
    default_message = "You are not allowed to perform this action"


class SelfRatingError(NotEligibleError):
    code = "self_rating"
    default_message = "You cannot rate yourself"


class CooldownError(NotEligibleError):
    """Raised when a rater is still inside the cooldown or daily cap."""

    code = "cooldown"
    default_message = "You are rating too often; please wait before rating again"


class TransientStoreError(EngineError):
    """Raised for connection loss, lock timeouts and serialization failures."""

    code = "try_again_later"
    default_message = "The service is temporarily unavailable, please try again later"


class ExternalServiceError(EngineError):
    """Raised by Whitelist Sync or Notifier clients when a call fails."""

    code = "external_service"
    default_message = "External service call failed"


TERMINAL_ERRORS: tuple[type[EngineError], ...] = (
    NotFoundError,
    InvalidStateError,
    DuplicateError,
    NotEligibleError,
)
