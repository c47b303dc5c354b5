"""
SQLAlchemy contact store
One unit of work is one database transaction. On PostgreSQL, lock keys map to
transaction-scoped advisory locks; other dialects fall back to an in-process
keyed lock held until the transaction has committed or rolled back.
"""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Iterable, List, Optional, Set

from sqlalchemy import or_, select, text, update
from sqlalchemy.exc import DataError, DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database import DatabaseManager
from models.base import utcnow
from models.contact import Contact, PRIMARY, SECONDARY
from .contact_store import ContactRecord
from .errors import ReconciliationError, StoreUnavailable, WriteConflict
from .locks import KeyedLock

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected
CONFLICT_SQLSTATES = {"40001", "40P01"}
CONFLICT_MESSAGES = ("database is locked", "deadlock detected", "could not serialize")

ADVISORY_LOCK_SQL = text("SELECT pg_advisory_xact_lock(hashtextextended(:key, 0))")


def is_write_conflict(exc: DBAPIError) -> bool:
    """Whether a driver error means a concurrent transaction got in the way"""
    for candidate in (exc.orig, getattr(exc.orig, "__cause__", None)):
        if candidate is None:
            continue
        sqlstate = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if sqlstate in CONFLICT_SQLSTATES:
            return True
    message = str(exc.orig).lower()
    return any(fragment in message for fragment in CONFLICT_MESSAGES)


class SqlContactTransaction:
    def __init__(self, session: AsyncSession, lock_stack: AsyncExitStack, dialect_name: str, local_locks: KeyedLock):
        self._session = session
        self._lock_stack = lock_stack
        self._dialect_name = dialect_name
        self._local_locks = local_locks
        self._held: Set[str] = set()

    async def acquire_locks(self, keys: Iterable[str]) -> None:
        for key in sorted(set(keys) - self._held):
            if self._dialect_name == "postgresql":
                await self._session.execute(ADVISORY_LOCK_SQL, {"key": key})
            else:
                await self._lock_stack.enter_async_context(self._local_locks.hold(key))
            self._held.add(key)

    async def _select(self, *criteria) -> List[ContactRecord]:
        query = (
            select(Contact)
            .where(Contact.deleted_at.is_(None), *criteria)
            .order_by(Contact.created_at, Contact.id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        return [contact.to_record() for contact in result.scalars().all()]

    async def query_by_attributes(self, email: Optional[str], phone: Optional[str]) -> List[ContactRecord]:
        conditions = []
        if email:
            conditions.append(Contact.email == email)
        if phone:
            conditions.append(Contact.phone_number == phone)
        if not conditions:
            return []
        return await self._select(or_(*conditions))

    async def query_by_cluster(self, primary_id: int) -> List[ContactRecord]:
        return await self._select(or_(Contact.id == primary_id, Contact.linked_id == primary_id))

    async def get_contacts(self, ids: Iterable[int]) -> List[ContactRecord]:
        ids = list(ids)
        if not ids:
            return []
        return await self._select(Contact.id.in_(ids))

    async def _insert(self, email, phone, link_precedence, linked_id) -> ContactRecord:
        now = utcnow()
        contact = Contact(
            email=email,
            phone_number=phone,
            link_precedence=link_precedence,
            linked_id=linked_id,
            created_at=now,
            updated_at=now
        )
        self._session.add(contact)
        await self._session.flush()  # Get the ID
        return contact.to_record()

    async def insert_primary(self, email: Optional[str], phone: Optional[str]) -> ContactRecord:
        return await self._insert(email, phone, PRIMARY, None)

    async def insert_secondary(self, email: Optional[str], phone: Optional[str], linked_id: int) -> ContactRecord:
        return await self._insert(email, phone, SECONDARY, linked_id)

    async def demote(self, contact_id: int, linked_id: int) -> None:
        statement = (
            update(Contact)
            .where(
                Contact.id == contact_id,
                Contact.link_precedence == PRIMARY,
                Contact.deleted_at.is_(None)
            )
            .values(link_precedence=SECONDARY, linked_id=linked_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(statement)
        if result.rowcount != 1:
            raise WriteConflict(f"Contact {contact_id} is no longer a live primary")

    async def repoint_dependents(self, from_id: int, to_id: int) -> int:
        statement = (
            update(Contact)
            .where(Contact.linked_id == from_id)
            .values(linked_id=to_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(statement)
        return result.rowcount


class SqlAlchemyContactStore:
    """ContactStore over the async session factory of a DatabaseManager"""

    def __init__(self, manager: DatabaseManager):
        self.manager = manager
        self._local_locks = KeyedLock()

    @asynccontextmanager
    async def unit_of_work(self):
        try:
            # locks outlive the transaction: released only after commit/rollback
            async with AsyncExitStack() as lock_stack:
                async with self.manager.session_factory() as session:
                    async with session.begin():
                        yield SqlContactTransaction(
                            session, lock_stack, self.manager.dialect_name, self._local_locks
                        )
        except (ReconciliationError, IntegrityError, DataError):
            raise
        except DBAPIError as e:
            if is_write_conflict(e):
                logger.warning(f"Write conflict in contact store: {e.orig}")
                raise WriteConflict("Concurrent update to the same contacts") from e
            logger.error(f"Contact store query failed: {e}")
            raise StoreUnavailable("Contact store is currently unavailable") from e
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Contact store unreachable: {e}")
            raise StoreUnavailable("Contact store is currently unavailable") from e
