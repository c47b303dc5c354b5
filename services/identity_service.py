"""
Identity Service - Core business logic for identity reconciliation
Orchestrates match -> resolve -> mutate -> re-read inside one unit of work,
serialized against any other request touching the same email / phone values
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from config import settings
from schemas.identify import IdentifyRequest, IdentifyResponse, ContactResponse
from .cluster_resolver import resolve_cluster
from .contact_store import (
    ContactRecord,
    ContactStore,
    ContactTransaction,
    attribute_lock_keys,
    cluster_lock_keys,
    cluster_roots,
)
from .errors import EmptyCluster, InvalidRequest, WriteConflict
from .matcher import ContactMatcher
from .view_builder import build_consolidated_view

logger = logging.getLogger(__name__)


class IdentityService:
    """
    Core service for identity reconciliation logic
    Handles all business rules for linking customer contacts
    """

    def __init__(
        self,
        store: ContactStore,
        matcher: Optional[ContactMatcher] = None,
        max_retries: int = settings.IDENTIFY_MAX_RETRIES,
        retry_backoff: float = settings.IDENTIFY_RETRY_BACKOFF
    ):
        self.store = store
        self.matcher = matcher or ContactMatcher()
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff

    async def identify_contact(self, request: IdentifyRequest) -> IdentifyResponse:
        contact = await self.identify(request.email, request.phoneNumber)
        return IdentifyResponse(contact=contact)

    async def identify(self, email: Optional[str], phone: Optional[str]) -> ContactResponse:
        """
        Reconcile one (email, phone) observation and return the consolidated
        view of the identity it belongs to.

        Algorithm:
        1. Find existing contacts matching email or phone
        2. If no matches -> create new primary contact
        3. If matches found -> oldest primary survives, other primaries are
           demoted together with their dependents, new information is
           recorded as one secondary
        4. Re-read the cluster and return consolidated contact information

        Write conflicts re-run the whole sequence from the match step.
        """
        email = (email or "").strip() or None
        phone = (phone or "").strip() or None
        if not email and not phone:
            raise InvalidRequest("Either email or phoneNumber must be provided")

        last_conflict = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await self._identify_once(email, phone)
            except WriteConflict as e:
                last_conflict = e
                logger.warning(
                    f"Write conflict on attempt {attempt}/{self.max_retries} "
                    f"for email={email}, phone={phone}: {e}"
                )
                if attempt < self.max_retries and self.retry_backoff:
                    await asyncio.sleep(self.retry_backoff * attempt)

        raise WriteConflict(
            f"Could not reconcile contact after {self.max_retries} attempts"
        ) from last_conflict

    async def _identify_once(self, email: Optional[str], phone: Optional[str]) -> ContactResponse:
        async with self.store.unit_of_work() as transaction:
            await transaction.acquire_locks(attribute_lock_keys(email, phone))

            matched = await self.matcher.find_overlapping(transaction, email, phone)

            if not matched:
                new_contact = await transaction.insert_primary(email, phone)
                logger.info(f"Created primary contact {new_contact.id}")
                return build_consolidated_view([new_contact])

            root_ids = cluster_roots(matched)
            await transaction.acquire_locks(cluster_lock_keys(root_ids))
            primaries = await self._load_primaries(transaction, root_ids)

            resolution = resolve_cluster(matched, primaries, email, phone)
            survivor = resolution.surviving_primary

            for contact in resolution.demote:
                await transaction.demote(contact.id, survivor.id)
                moved = await transaction.repoint_dependents(contact.id, survivor.id)
                logger.info(
                    f"Merged primary contact {contact.id} into {survivor.id} "
                    f"({moved} dependent contacts re-linked)"
                )

            if resolution.has_new_information:
                secondary = await transaction.insert_secondary(email, phone, survivor.id)
                logger.info(f"Created secondary contact {secondary.id} linked to {survivor.id}")

            cluster = await transaction.query_by_cluster(survivor.id)
            return build_consolidated_view(cluster)

    async def _load_primaries(self, transaction: ContactTransaction, root_ids: Sequence[int]) -> List[ContactRecord]:
        """
        Fresh read of the cluster roots, taken after their cluster locks.
        A root that stopped being primary was merged by a request that
        committed between our match and our lock. A root that is missing
        was soft-deleted under a live secondary, which no retry can repair.
        """
        primaries = await transaction.get_contacts(root_ids)
        missing = sorted(set(root_ids) - {contact.id for contact in primaries})
        if missing:
            raise EmptyCluster(f"Primary contacts {missing} are missing for live secondaries")
        if not all(contact.is_primary() for contact in primaries):
            raise WriteConflict(f"Clusters {list(root_ids)} changed while being locked")
        return primaries


_identity_service: Optional[IdentityService] = None


def build_contact_store() -> ContactStore:
    """Contact store selected by CONTACT_STORE_BACKEND"""
    if settings.CONTACT_STORE_BACKEND == "memory":
        from .memory_store import InMemoryContactStore

        logger.warning("Using in-memory contact store; contacts are not persisted")
        return InMemoryContactStore()

    from database import db_manager
    from .sql_store import SqlAlchemyContactStore

    return SqlAlchemyContactStore(db_manager)


def get_identity_service() -> IdentityService:
    """Process-wide service, created on first use"""
    global _identity_service
    if _identity_service is None:
        _identity_service = IdentityService(build_contact_store())
    return _identity_service
