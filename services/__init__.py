"""
Business logic services for Identity Reconciliation API
Contains the reconciliation engine, its matcher / resolver / view builder
and the contact store implementations it runs against.
"""

from .errors import (
    ReconciliationError,
    InvalidRequest,
    StoreUnavailable,
    WriteConflict,
    EmptyCluster
)
from .contact_store import ContactRecord, ContactStore, ContactTransaction
from .identity_service import IdentityService, get_identity_service

__all__ = [
    "ReconciliationError",
    "InvalidRequest",
    "StoreUnavailable",
    "WriteConflict",
    "EmptyCluster",
    "ContactRecord",
    "ContactStore",
    "ContactTransaction",
    "IdentityService",
    "get_identity_service"
]
