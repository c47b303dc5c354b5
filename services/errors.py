"""
Error kinds raised by the reconciliation services
The HTTP layer maps each kind onto a status code; `error` is the value
reported in ErrorResponse.error
"""


class ReconciliationError(Exception):
    """Base class for every error the reconciliation services raise"""

    error = "ReconciliationError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(ReconciliationError):
    """Neither email nor phone number was supplied"""

    error = "InvalidRequest"


class StoreUnavailable(ReconciliationError):
    """The contact store could not be reached or failed for infrastructural reasons"""

    error = "StoreUnavailable"


class WriteConflict(ReconciliationError):
    """A concurrent mutation invalidated the in-progress unit of work"""

    error = "WriteConflict"


class EmptyCluster(ReconciliationError):
    """
    A resolved cluster had no members (or no single primary), or a live
    secondary points at a primary that is gone.
    Signals a resolver or store bug, never an expected outcome.
    """

    error = "EmptyCluster"
