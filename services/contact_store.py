"""
Contact store contract consumed by the reconciliation engine
A store hands out units of work; every read and mutation of one identify
call happens inside a single unit, which commits on normal exit and rolls
back entirely when an exception escapes it.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncContextManager, Iterable, List, Optional, Protocol, Sequence, Tuple

from models.contact import PRIMARY, SECONDARY


@dataclass(frozen=True)
class ContactRecord:
    """Immutable snapshot of one contact row"""

    id: int
    email: Optional[str]
    phone_number: Optional[str]
    link_precedence: str
    linked_id: Optional[int]
    created_at: datetime
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    def is_primary(self) -> bool:
        return self.link_precedence == PRIMARY

    def is_secondary(self) -> bool:
        return self.link_precedence == SECONDARY

    @property
    def root_id(self) -> int:
        """Id of the primary this contact belongs to"""
        return self.id if self.is_primary() else self.linked_id

    @property
    def sort_key(self) -> Tuple[datetime, int]:
        # oldest first, id breaks created_at ties
        return (self.created_at, self.id)


class ContactTransaction(Protocol):
    """Operations available inside one unit of work"""

    async def acquire_locks(self, keys: Iterable[str]) -> None:
        """Hold exclusive locks on `keys` until the unit of work ends"""
        ...

    async def query_by_attributes(self, email: Optional[str], phone: Optional[str]) -> List[ContactRecord]:
        """Live contacts whose email or phone equals the given value, oldest first"""
        ...

    async def query_by_cluster(self, primary_id: int) -> List[ContactRecord]:
        """The primary and every live contact linked to it, oldest first"""
        ...

    async def get_contacts(self, ids: Iterable[int]) -> List[ContactRecord]:
        """Live contacts with the given ids, oldest first"""
        ...

    async def insert_primary(self, email: Optional[str], phone: Optional[str]) -> ContactRecord:
        ...

    async def insert_secondary(self, email: Optional[str], phone: Optional[str], linked_id: int) -> ContactRecord:
        ...

    async def demote(self, contact_id: int, linked_id: int) -> None:
        """Turn a current primary into a secondary of `linked_id`; raises WriteConflict otherwise"""
        ...

    async def repoint_dependents(self, from_id: int, to_id: int) -> int:
        """Move every contact linked to `from_id` onto `to_id`; returns how many moved"""
        ...


class ContactStore(Protocol):
    def unit_of_work(self) -> AsyncContextManager[ContactTransaction]:
        ...


def normalize_email_key(email: str) -> str:
    return email.strip().lower()


def normalize_phone_key(phone: str) -> str:
    phone = phone.strip()
    digits = re.sub(r"\D", "", phone)
    return f"+{digits}" if phone.startswith("+") else digits


def attribute_lock_keys(email: Optional[str], phone: Optional[str]) -> List[str]:
    """
    Lock keys for the attribute values a request touches.
    Normalization is coarser than exact matching, so two requests sharing an
    exact value always share a key.
    """
    keys = []
    if email:
        keys.append(f"email:{normalize_email_key(email)}")
    if phone:
        keys.append(f"phone:{normalize_phone_key(phone)}")
    return sorted(keys)


def cluster_lock_keys(primary_ids: Iterable[int]) -> List[str]:
    return [f"cluster:{primary_id}" for primary_id in sorted(set(primary_ids))]


def order_contacts(contacts: Iterable[ContactRecord]) -> List[ContactRecord]:
    return sorted(contacts, key=lambda contact: contact.sort_key)


def cluster_roots(contacts: Sequence[ContactRecord]) -> List[int]:
    """Distinct primary ids of the clusters the given contacts belong to"""
    return sorted({contact.root_id for contact in contacts})
