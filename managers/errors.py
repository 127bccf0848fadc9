# managers/errors.py
from __future__ import annotations


class ClarificationError(Exception):
    """Critical-path failure with a message that is safe to show the customer."""

    status_code = 400
    code = "clarification_error"
    # terminal: resubmitting the same token can never succeed
    terminal = False

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code


class TokenInvalidError(ClarificationError):
    status_code = 400
    code = "token_invalid"
    terminal = True

    def __init__(self, message: str = "Link expired or invalid. Please request a new link.", **kw):
        super().__init__(message, **kw)


class LineValidationError(ClarificationError):
    status_code = 400
    code = "validation_error"


class OrderNotFoundError(ClarificationError):
    status_code = 404
    code = "order_not_found"
    terminal = True

    def __init__(self, message: str = "Order not found.", **kw):
        super().__init__(message, **kw)


class StorageTransientError(ClarificationError):
    status_code = 500
    code = "server_error"

    def __init__(self, message: str = "Something went wrong. Please try again later.", **kw):
        super().__init__(message, **kw)


class LearningFailure(Exception):
    """Raised inside the learning writer only to be logged; never escapes it."""
