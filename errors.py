"""Error taxonomy for event ingestion.

Each error carries the HTTP status the track endpoint answers with.
`AlreadyProcessed` is a control-flow signal, not a failure: the request
still succeeds.
"""

from __future__ import annotations


class TrackingError(Exception):
    status_code = 500
    message = "Failed to track event"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message}


class ValidationError(TrackingError):
    status_code = 400
    message = "Invalid event"


class InvalidEventType(ValidationError):
    pass


class RateLimitExceeded(TrackingError):
    status_code = 429
    message = "Rate limit exceeded"


class InvalidTransaction(TrackingError):
    status_code = 400
    message = "Invalid transaction"


class AlreadyProcessed(TrackingError):
    status_code = 200
    message = "Transaction already processed"


class StoreFailure(TrackingError):
    status_code = 500
    message = "Failed to track event"


class ReputationComputationError(TrackingError):
    message = "Reputation calc error"
