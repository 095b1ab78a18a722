from typing import Any, Dict, Optional


class RewardsError(Exception):
    status_code = 500
    error_code = "UNKNOWN_ERROR"

    def __init__(self, detail: str, metadata: Optional[Dict[str, Any]] = None):
        super().__init__(detail)
        self.detail = detail
        self.metadata = metadata or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.detail,
            "error_code": self.error_code,
            "metadata": self.metadata,
        }


class NotFoundError(RewardsError):
    status_code = 404
    error_code = "RESOURCE_NOT_FOUND"
    resource = "Resource"

    def __init__(self, resource_id: str):
        super().__init__(
            f"{self.resource} not found",
            metadata={"resource": self.resource.lower(), "id": resource_id},
        )


class UserNotFound(NotFoundError):
    resource = "User"


class ContentNotFound(NotFoundError):
    resource = "Content"


class CommentNotFound(NotFoundError):
    resource = "Comment"


class ReplyNotFound(NotFoundError):
    resource = "Reply"


class NoOpenSession(RewardsError):
    status_code = 404
    error_code = "NO_OPEN_SESSION"

    def __init__(self, user_id: str):
        super().__init__("Content start time not recorded", metadata={"userId": user_id})


class DurationTooShort(RewardsError):
    status_code = 400
    error_code = "DURATION_TOO_SHORT"

    def __init__(self, elapsed_minutes: float, min_minutes: float):
        if min_minutes == 1:
            detail = "Duration must be at least one minute"
        else:
            detail = f"Duration must be at least {min_minutes:g} minutes"
        super().__init__(
            detail,
            metadata={"elapsedMinutes": elapsed_minutes, "minMinutes": min_minutes},
        )
        self.elapsed_minutes = elapsed_minutes


class SessionConflict(RewardsError):
    """The open session changed between reading it and closing it."""

    status_code = 409
    error_code = "SESSION_CONFLICT"

    def __init__(self, user_id: str):
        super().__init__("Viewing session changed, retry", metadata={"userId": user_id})


class DuplicateResource(RewardsError):
    status_code = 409
    error_code = "DUPLICATE_RESOURCE"


class NotAuthorized(RewardsError):
    status_code = 401
    error_code = "NOT_AUTHORIZED"

    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(detail)


class StoreUnavailable(RewardsError):
    status_code = 500
    error_code = "STORE_UNAVAILABLE"

    def __init__(self, detail: str = "Database not configured"):
        super().__init__(detail)
