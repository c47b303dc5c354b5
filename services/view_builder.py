"""
View Builder - assembles the consolidated, externally visible view of a cluster
"""

from typing import List, Optional, Sequence

from schemas.identify import ContactResponse
from .contact_store import ContactRecord, order_contacts
from .errors import EmptyCluster


def _distinct_values(primary_value: Optional[str], values: List[Optional[str]]) -> List[str]:
    # primary's own value first, then first appearance by contact age
    result = [primary_value] if primary_value else []
    for value in values:
        if value and value not in result:
            result.append(value)
    return result


def build_consolidated_view(cluster: Sequence[ContactRecord]) -> ContactResponse:
    """
    Build the consolidated view of one cluster (primary plus its secondaries).

    Emails and phone numbers are distinct, the primary's own value first and
    the rest in ascending age of the contact that carries them. Secondary ids
    are ascending by age.
    """
    if not cluster:
        raise EmptyCluster("Cannot build a view of an empty cluster")

    contacts = order_contacts(cluster)
    primaries = [contact for contact in contacts if contact.is_primary()]
    if len(primaries) != 1:
        raise EmptyCluster(f"Cluster has {len(primaries)} primary contacts, expected exactly one")

    primary = primaries[0]
    secondaries = [contact for contact in contacts if contact.id != primary.id]

    return ContactResponse(
        primaryContactId=primary.id,
        emails=_distinct_values(primary.email, [contact.email for contact in secondaries]),
        phoneNumbers=_distinct_values(primary.phone_number, [contact.phone_number for contact in secondaries]),
        secondaryContactIds=[contact.id for contact in secondaries]
    )
