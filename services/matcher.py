"""
Matcher - finds existing contacts overlapping an incoming email / phone pair
"""

from typing import List, Optional

from .contact_store import ContactRecord, ContactTransaction


class ContactMatcher:
    """Exact-string overlap on email OR phone number, live contacts only"""

    async def find_overlapping(
        self,
        transaction: ContactTransaction,
        email: Optional[str],
        phone: Optional[str]
    ) -> List[ContactRecord]:
        if not email and not phone:
            return []
        return await transaction.query_by_attributes(email, phone)
