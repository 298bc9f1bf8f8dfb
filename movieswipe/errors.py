# movieswipe/errors.py
"""Domain errors for group, preference, recommendation and voting operations.

Every failure carries a discriminable code, a broad kind used by the HTTP
layer to pick a status, and a user-safe message.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorKind(Enum):
    """Broad error categories."""

    UNAUTHENTICATED = "UNAUTHENTICATED"
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    INVALID_STATE = "INVALID_STATE"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    VALIDATION = "VALIDATION"
    PRECONDITION = "PRECONDITION"
    UNAVAILABLE = "UNAVAILABLE"
    INTERNAL = "INTERNAL"


class ErrorCode(Enum):
    """Specific domain error codes."""

    UNAUTHENTICATED = "UNAUTHENTICATED"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    GROUP_NOT_FOUND = "GROUP_NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    NOT_OWNER = "NOT_OWNER"
    NOT_A_MEMBER = "NOT_A_MEMBER"
    GROUP_INACTIVE = "GROUP_INACTIVE"
    SESSION_NOT_PENDING = "SESSION_NOT_PENDING"
    SESSION_NOT_ACTIVE = "SESSION_NOT_ACTIVE"
    SESSION_NOT_COMPLETED = "SESSION_NOT_COMPLETED"
    OWNER_CANNOT_LEAVE = "OWNER_CANNOT_LEAVE"
    SESSION_ALREADY_ACTIVE = "SESSION_ALREADY_ACTIVE"
    ALREADY_MEMBER = "ALREADY_MEMBER"
    INVALID_INVITATION_CODE = "INVALID_INVITATION_CODE"
    GROUP_LIMIT_REACHED = "GROUP_LIMIT_REACHED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_MOVIE = "INVALID_MOVIE"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    PREFERENCES_INCOMPLETE = "PREFERENCES_INCOMPLETE"
    NO_RECOMMENDATIONS = "NO_RECOMMENDATIONS"
    CATALOG_UNAVAILABLE = "CATALOG_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(eq=False)
class DomainError(Exception):
    """Base domain error with code, kind and user-safe message."""

    code: ErrorCode
    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


# --- Not found ---

class UserNotFoundError(DomainError):
    """Raised when a user is missing or deactivated."""

    def __init__(self, user_id) -> None:
        super().__init__(
            code=ErrorCode.USER_NOT_FOUND,
            kind=ErrorKind.NOT_FOUND,
            message="User not found",
        )
        self.user_id = user_id


class GroupNotFoundError(DomainError):
    """Raised when a group does not exist."""

    def __init__(self, group_id) -> None:
        super().__init__(
            code=ErrorCode.GROUP_NOT_FOUND,
            kind=ErrorKind.NOT_FOUND,
            message="Group not found",
        )
        self.group_id = group_id


class SessionNotFoundError(DomainError):
    """Raised when a voting session does not exist."""

    def __init__(self, session_id) -> None:
        super().__init__(
            code=ErrorCode.SESSION_NOT_FOUND,
            kind=ErrorKind.NOT_FOUND,
            message="Voting session not found",
        )
        self.session_id = session_id


# --- Authorization ---

class UnauthenticatedError(DomainError):
    """Raised when a request carries no caller identity."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.UNAUTHENTICATED,
            kind=ErrorKind.UNAUTHENTICATED,
            message="X-User-Id header is required",
        )


class NotOwnerError(DomainError):
    """Raised when a non-owner attempts an owner-only operation."""

    def __init__(self, action: str = "perform this action") -> None:
        super().__init__(
            code=ErrorCode.NOT_OWNER,
            kind=ErrorKind.FORBIDDEN,
            message=f"Only the group owner can {action}",
        )


class NotAMemberError(DomainError):
    """Raised when the caller does not belong to the group."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.NOT_A_MEMBER,
            kind=ErrorKind.FORBIDDEN,
            message="User is not a member of this group",
        )


# --- State ---

class GroupInactiveError(DomainError):
    """Raised when a deleted group is used for a write."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.GROUP_INACTIVE,
            kind=ErrorKind.INVALID_STATE,
            message="Group is no longer active",
        )


class SessionNotPendingError(DomainError):
    """Raised when starting a session that is not pending."""

    def __init__(self, status: str) -> None:
        super().__init__(
            code=ErrorCode.SESSION_NOT_PENDING,
            kind=ErrorKind.INVALID_STATE,
            message=f"Voting session cannot be started from status '{status}'",
        )
        self.status = status


class SessionNotActiveError(DomainError):
    """Raised when voting, ending or cancelling a session that is not active."""

    def __init__(self, status: str) -> None:
        super().__init__(
            code=ErrorCode.SESSION_NOT_ACTIVE,
            kind=ErrorKind.INVALID_STATE,
            message=f"Voting session is not active (status '{status}')",
        )
        self.status = status


class SessionNotCompletedError(DomainError):
    """Raised when reading results of a session that has not completed."""

    def __init__(self, status: str) -> None:
        super().__init__(
            code=ErrorCode.SESSION_NOT_COMPLETED,
            kind=ErrorKind.INVALID_STATE,
            message=f"Results are only available for completed sessions (status '{status}')",
        )
        self.status = status


class OwnerCannotLeaveError(DomainError):
    """Raised when the group owner tries to leave their own group."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.OWNER_CANNOT_LEAVE,
            kind=ErrorKind.INVALID_STATE,
            message="Group owner cannot leave the group. Please delete the group instead.",
        )


# --- Uniqueness ---

class SessionAlreadyActiveError(DomainError):
    """Raised when the group already has a pending or active session."""

    def __init__(self, group_id) -> None:
        super().__init__(
            code=ErrorCode.SESSION_ALREADY_ACTIVE,
            kind=ErrorKind.ALREADY_EXISTS,
            message="There is already an open voting session for this group",
        )
        self.group_id = group_id


class AlreadyMemberError(DomainError):
    """Raised when joining a group the user already belongs to."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.ALREADY_MEMBER,
            kind=ErrorKind.ALREADY_EXISTS,
            message="User is already a member of this group",
        )


# --- Validation ---

class ValidationError(DomainError):
    """Raised for malformed input that passed the request schema."""

    def __init__(self, message: str) -> None:
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            kind=ErrorKind.VALIDATION,
            message=message,
        )


class InvalidInvitationCodeError(DomainError):
    """Raised when no active group carries the invitation code."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.INVALID_INVITATION_CODE,
            kind=ErrorKind.NOT_FOUND,
            message="Invalid invitation code",
        )


class InvalidMovieError(DomainError):
    """Raised when voting on a movie outside the session's candidates."""

    def __init__(self, movie_id: int) -> None:
        super().__init__(
            code=ErrorCode.INVALID_MOVIE,
            kind=ErrorKind.VALIDATION,
            message="Invalid movie for this voting session",
        )
        self.movie_id = movie_id


# --- Business preconditions ---

class GroupLimitReachedError(DomainError):
    """Raised when joining or creating a group past the per-user limit."""

    def __init__(self, limit: int) -> None:
        super().__init__(
            code=ErrorCode.GROUP_LIMIT_REACHED,
            kind=ErrorKind.PRECONDITION,
            message=f"User is already in the maximum number of groups ({limit})",
        )


class InsufficientDataError(DomainError):
    """Raised when no member of the group has set preferences."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.INSUFFICIENT_DATA,
            kind=ErrorKind.PRECONDITION,
            message="No group member has set genre preferences yet",
        )


class PreferencesIncompleteError(DomainError):
    """Raised when a session requires every member's preferences and some are missing."""

    def __init__(self, missing: int) -> None:
        super().__init__(
            code=ErrorCode.PREFERENCES_INCOMPLETE,
            kind=ErrorKind.PRECONDITION,
            message="All group members must set their genre preferences before starting a voting session",
        )
        self.missing = missing


class NoRecommendationsError(DomainError):
    """Raised when the catalog yields no candidates for a session."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.NO_RECOMMENDATIONS,
            kind=ErrorKind.PRECONDITION,
            message="No movie recommendations available for this group",
        )


# --- External ---

class CatalogUnavailableError(DomainError):
    """Raised when the movie catalog cannot be reached or returns garbage."""

    def __init__(self, detail: str = "") -> None:
        super().__init__(
            code=ErrorCode.CATALOG_UNAVAILABLE,
            kind=ErrorKind.UNAVAILABLE,
            message="Movie catalog is currently unavailable",
        )
        # Kept for logs only, never sent to clients
        self.detail = detail
