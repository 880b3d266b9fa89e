"""Error taxonomy shared by the payment, payout and reconciliation flows."""
from __future__ import annotations


class AffiliateDeskError(Exception):
    """Base class; ``status_code`` is what the API layer answers with."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(AffiliateDeskError):
    status_code = 400


class NotFoundError(AffiliateDeskError):
    status_code = 404


class StateConflictError(AffiliateDeskError):
    status_code = 409


class DuplicateCommissionError(StateConflictError):
    pass


class DuplicateEnrollmentError(StateConflictError):
    pass


class KycIncompleteError(StateConflictError):
    pass


class ExternalServiceError(AffiliateDeskError):
    status_code = 502


class ParseError(AffiliateDeskError, ValueError):
    status_code = 400
