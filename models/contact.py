"""
Contact model for Identity Reconciliation API
This module defines the Contact database model for storing customer
contact information and managing identity linking relationships.
Supports primary/secondary contact hierarchy and soft delete functionality.
"""

from sqlalchemy import Column, String, Integer, ForeignKey, Index, CheckConstraint

from .base import BaseModel

PRIMARY = "primary"
SECONDARY = "secondary"


class Contact(BaseModel):
    """
    Contact model representing customer contact information

    Stores email and phone number data with linking relationships
    to support identity reconciliation. Each contact is either
    'primary' (canonical for its cluster) or 'secondary' (linked to
    exactly one primary, never to another secondary).

    Database Table: contacts
    """
    __tablename__ = "contacts"

    phone_number = Column(
        String(20),
        nullable=True,
        index=True,
        comment="Customer phone number as provided"
    )

    email = Column(
        String(255),
        nullable=True,
        index=True,
        comment="Customer email address"
    )

    linked_id = Column(
        Integer,
        ForeignKey("contacts.id"),
        nullable=True,
        index=True,
        comment="ID of the primary contact this secondary contact links to"
    )

    link_precedence = Column(
        String(10),
        nullable=False,
        default=PRIMARY,
        comment="Either 'primary' (canonical contact) or 'secondary' (linked contact)"
    )

    __table_args__ = (
        CheckConstraint(
            link_precedence.in_([PRIMARY, SECONDARY]),
            name="valid_link_precedence"
        ),
        CheckConstraint(
            "(phone_number IS NOT NULL) OR (email IS NOT NULL)",
            name="contact_info_required"
        ),
        CheckConstraint(
            "(link_precedence = 'primary' AND linked_id IS NULL) OR "
            "(link_precedence = 'secondary' AND linked_id IS NOT NULL)",
            name="secondary_must_have_linked_id"
        ),
        Index("ix_contact_email_phone", email, phone_number),
        Index("ix_contact_precedence_linked", link_precedence, linked_id),
    )

    def to_record(self):
        """Detach this row into an immutable ContactRecord for the reconciliation services"""
        from services.contact_store import ContactRecord

        return ContactRecord(
            id=self.id,
            email=self.email,
            phone_number=self.phone_number,
            link_precedence=self.link_precedence,
            linked_id=self.linked_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            deleted_at=self.deleted_at,
        )

