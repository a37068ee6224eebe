"""Domain error taxonomy.

Services raise these; `main` maps them to JSON responses of the form
`{"error": <message>}` using the `status_code` carried by each class.
"""

from typing import List, Optional


class ServiceError(Exception):
    """Base class for errors that are safe to show to API clients."""
    status_code = 500

    def __init__(self, message: str, details: Optional[List[dict]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ServiceError):
    """Malformed input: empty answers, bad amount, self-transfer, bad status."""
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class ForbiddenError(ServiceError):
    status_code = 403


class InsufficientFundsError(ServiceError):
    """Sender balance does not cover the amount (at request or settlement time)."""
    status_code = 400


class InvalidStateError(ServiceError):
    """Settlement attempted on a transaction that is no longer pending."""
    status_code = 400
