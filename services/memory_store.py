"""
In-memory contact store
Process-local and non durable. Backs the test suite and lets the service run
without a database (CONTACT_STORE_BACKEND=memory). Each unit of work stages
its writes privately and publishes them atomically on commit.
"""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Set

from models.base import utcnow
from models.contact import PRIMARY, SECONDARY
from .contact_store import ContactRecord, order_contacts
from .errors import WriteConflict
from .locks import KeyedLock

logger = logging.getLogger(__name__)


class InMemoryTransaction:
    def __init__(self, store: "InMemoryContactStore", stack: AsyncExitStack):
        self._store = store
        self._stack = stack
        self._held: Set[str] = set()
        self._pending: Dict[int, ContactRecord] = {}
        # committed version of every record this unit modified, checked at commit
        self._base: Dict[int, Optional[ContactRecord]] = {}
        self._inserted: Set[int] = set()

    async def acquire_locks(self, keys: Iterable[str]) -> None:
        for key in sorted(set(keys) - self._held):
            await self._stack.enter_async_context(self._store._locks.hold(key))
            self._held.add(key)

    def _all(self) -> List[ContactRecord]:
        merged = dict(self._store._contacts)
        merged.update(self._pending)
        return list(merged.values())

    def _live(self) -> List[ContactRecord]:
        return [contact for contact in self._all() if contact.deleted_at is None]

    def _current(self, contact_id: int) -> Optional[ContactRecord]:
        contact = self._pending.get(contact_id, self._store._contacts.get(contact_id))
        if contact is None or contact.deleted_at is not None:
            return None
        return contact

    def _write(self, record: ContactRecord) -> None:
        if record.id not in self._inserted and record.id not in self._base:
            self._base[record.id] = self._store._contacts.get(record.id)
        self._pending[record.id] = record

    async def query_by_attributes(self, email: Optional[str], phone: Optional[str]) -> List[ContactRecord]:
        await asyncio.sleep(0)
        return order_contacts(
            contact for contact in self._live()
            if (email and contact.email == email) or (phone and contact.phone_number == phone)
        )

    async def query_by_cluster(self, primary_id: int) -> List[ContactRecord]:
        await asyncio.sleep(0)
        return order_contacts(
            contact for contact in self._live()
            if contact.id == primary_id or contact.linked_id == primary_id
        )

    async def get_contacts(self, ids: Iterable[int]) -> List[ContactRecord]:
        await asyncio.sleep(0)
        wanted = set(ids)
        return order_contacts(contact for contact in self._live() if contact.id in wanted)

    async def _insert(self, email, phone, link_precedence, linked_id) -> ContactRecord:
        await asyncio.sleep(0)
        now = self._store._clock()
        record = ContactRecord(
            id=self._store._allocate_id(),
            email=email,
            phone_number=phone,
            link_precedence=link_precedence,
            linked_id=linked_id,
            created_at=now,
            updated_at=now,
        )
        self._inserted.add(record.id)
        self._write(record)
        return record

    async def insert_primary(self, email: Optional[str], phone: Optional[str]) -> ContactRecord:
        return await self._insert(email, phone, PRIMARY, None)

    async def insert_secondary(self, email: Optional[str], phone: Optional[str], linked_id: int) -> ContactRecord:
        return await self._insert(email, phone, SECONDARY, linked_id)

    async def demote(self, contact_id: int, linked_id: int) -> None:
        await asyncio.sleep(0)
        current = self._current(contact_id)
        if current is None or not current.is_primary():
            raise WriteConflict(f"Contact {contact_id} is no longer a live primary")
        self._write(replace(
            current,
            link_precedence=SECONDARY,
            linked_id=linked_id,
            updated_at=self._store._clock(),
        ))

    async def repoint_dependents(self, from_id: int, to_id: int) -> int:
        await asyncio.sleep(0)
        now = self._store._clock()
        # soft-deleted dependents move too so no row ever points at a secondary
        dependents = [contact for contact in self._all() if contact.linked_id == from_id]
        for contact in dependents:
            self._write(replace(contact, linked_id=to_id, updated_at=now))
        return len(dependents)


class InMemoryContactStore:
    """Dict-backed ContactStore"""

    def __init__(self, clock: Callable = utcnow):
        self._contacts: Dict[int, ContactRecord] = {}
        self._next_id = 1
        self._locks = KeyedLock()
        self._clock = clock

    def _allocate_id(self) -> int:
        contact_id = self._next_id
        self._next_id += 1
        return contact_id

    @asynccontextmanager
    async def unit_of_work(self):
        async with AsyncExitStack() as stack:
            transaction = InMemoryTransaction(self, stack)
            yield transaction
            self._commit(transaction)

    def _commit(self, transaction: InMemoryTransaction) -> None:
        for contact_id, base in transaction._base.items():
            if self._contacts.get(contact_id) is not base:
                logger.warning(f"Contact {contact_id} changed concurrently; rejecting commit")
                raise WriteConflict(f"Contact {contact_id} was modified by a concurrent request")
        self._contacts.update(transaction._pending)

    def soft_delete(self, contact_id: int) -> None:
        contact = self._contacts[contact_id]
        self._contacts[contact_id] = replace(contact, deleted_at=self._clock())

    def snapshot(self) -> List[ContactRecord]:
        """Every committed contact, oldest first"""
        return order_contacts(self._contacts.values())
