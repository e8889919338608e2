"""
Error taxonomy for the ordering core.

Every error carries the HTTP status the API answers with, so the routes in
main.py only need a single exception handler.
"""
from typing import Optional


class CanteenError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(CanteenError):
    status_code = 404


class ValidationFailed(CanteenError):
    status_code = 400


class InsufficientStock(CanteenError):
    status_code = 409

    def __init__(self, name: str, available: int, requested: int, item_id: Optional[str] = None):
        super().__init__(
            f"Insufficient stock for {name}. Available: {available}, Requested: {requested}"
        )
        self.name = name
        self.available = available
        self.requested = requested
        self.item_id = item_id


class ItemUnavailable(CanteenError):
    status_code = 409


class AlreadyTerminal(CanteenError):
    status_code = 409


class InvalidTransition(CanteenError):
    status_code = 409


class InternalFailure(CanteenError):
    status_code = 500
