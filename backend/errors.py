"""Failure types raised across the visibility backend."""


class VisibilityError(Exception):
    """Base class for all backend failures."""


class NotFound(VisibilityError):
    """The requested item does not exist in the content store."""

    def __init__(self, item_id: int):
        super().__init__(f"Item {item_id} not found.")
        self.item_id = item_id


class ExternalServiceError(VisibilityError):
    """The AI text service could not produce a usable response."""

    code = "ai_error"


class NoKeyError(ExternalServiceError):
    code = "ai_no_key"


class HttpError(ExternalServiceError):
    code = "ai_http_error"


class EmptyResponseError(ExternalServiceError):
    code = "ai_empty_response"


class InvalidState(VisibilityError):
    """An operation was requested in a scan state where it does nothing."""


class LockContention(VisibilityError):
    """Another tick already holds the batch scan lock."""
