"""
Cluster Resolver - decides which primary survives a match and what must change

A single request can touch several clusters: its email may belong to one
identity and its phone number to another. The oldest primary among the
touched clusters survives; every other primary is demoted under it.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .contact_store import ContactRecord, order_contacts
from .errors import EmptyCluster


@dataclass(frozen=True)
class ClusterResolution:
    surviving_primary: ContactRecord
    demote: Tuple[ContactRecord, ...]
    has_new_email: bool
    has_new_phone: bool

    @property
    def has_new_information(self) -> bool:
        return self.has_new_email or self.has_new_phone


def resolve_cluster(
    matched: Sequence[ContactRecord],
    primaries: Sequence[ContactRecord],
    email: Optional[str],
    phone: Optional[str]
) -> ClusterResolution:
    """
    Resolve the matched contacts of one request.

    Args:
        matched: contacts overlapping the request
        primaries: the primary of every cluster the matched contacts belong
            to, including clusters reached only through a matched secondary
        email, phone: the incoming values

    New-information flags compare the incoming values against `matched`:
    any contact already carrying the value would have been matched by it.
    """
    candidates = order_contacts(contact for contact in primaries if contact.is_primary())
    if not candidates:
        raise EmptyCluster("No primary contact among the matched clusters")

    surviving_primary, demote = candidates[0], tuple(candidates[1:])

    known_emails = {contact.email for contact in matched if contact.email}
    known_phones = {contact.phone_number for contact in matched if contact.phone_number}

    return ClusterResolution(
        surviving_primary=surviving_primary,
        demote=demote,
        has_new_email=bool(email) and email not in known_emails,
        has_new_phone=bool(phone) and phone not in known_phones,
    )
