"""
Shared fixtures for the Identity Reconciliation test suite
"""

from datetime import datetime, timedelta

import pytest

from services.identity_service import IdentityService
from services.memory_store import InMemoryContactStore


class TickingClock:
    """Deterministic clock: every call is one second after the previous one"""

    def __init__(self, start=datetime(2024, 1, 1)):
        self.now = start

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


def assert_cluster_invariants(contacts):
    """Exactly one primary per cluster and every secondary one hop from it"""
    by_id = {contact.id: contact for contact in contacts}
    for contact in contacts:
        if contact.is_primary():
            assert contact.linked_id is None, f"primary {contact.id} has linked_id"
        else:
            assert contact.linked_id in by_id, f"secondary {contact.id} links to unknown contact"
            assert by_id[contact.linked_id].is_primary(), (
                f"secondary {contact.id} links to non-primary {contact.linked_id}"
            )


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def memory_store(clock):
    return InMemoryContactStore(clock=clock)


@pytest.fixture
def service(memory_store):
    return IdentityService(memory_store, retry_backoff=0)


@pytest.fixture
def check_invariants():
    return assert_cluster_invariants
