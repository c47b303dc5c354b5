"""
Pydantic schemas for the /identify endpoint
Handles request validation and response serialization
"null" strings and blank values are treated as absent
"""

import re
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator, model_validator


def _is_blank(v) -> bool:
    return isinstance(v, str) and v.strip().lower() in ('null', '')


class IdentifyRequest(BaseModel):
    """
    Request schema for the /identify endpoint
    Validates that at least one of email or phoneNumber is provided
    """
    email: Optional[str] = Field(
        None,
        description="Customer email address",
        examples=["customer@example.com", None]
    )
    phoneNumber: Optional[str] = Field(
        None,
        description="Customer phone number",
        examples=["+1234567890", "123456", None]
    )

    @field_validator('email', mode='before')
    @classmethod
    def validate_email(cls, v) -> Optional[str]:
        if v is None or _is_blank(v):
            return None

        if not isinstance(v, str):
            raise ValueError('Email must be a string')

        v = v.strip()
        if '@' not in v:
            raise ValueError('Invalid email format: email must contain @')
        if len(v) > 255:
            raise ValueError('Email must be at most 255 characters')
        return v

    @field_validator('phoneNumber', mode='before')
    @classmethod
    def validate_phone_number(cls, v) -> Optional[str]:
        """
        Accepts strings or numbers; the value is stored as provided
        (trimmed), matching is exact-string
        """
        if v is None or _is_blank(v):
            return None

        if isinstance(v, bool):
            raise ValueError('Phone number must be a string or number')

        # Convert to string if it's a number
        if isinstance(v, (int, float)):
            v = str(int(v))

        if not isinstance(v, str):
            raise ValueError('Phone number must be a string or number')

        v = v.strip()
        if len(re.sub(r'\D', '', v)) < 3:
            raise ValueError('Phone number must contain at least 3 digits')
        if len(v) > 20:
            raise ValueError('Phone number must be at most 20 characters')

        return v

    @model_validator(mode='after')
    def validate_at_least_one_field(self):
        if not self.email and not self.phoneNumber:
            raise ValueError('Either email or phoneNumber must be provided')
        return self

    class Config:
        json_schema_extra = {
            "examples": [
                {"email": "customer@example.com", "phoneNumber": "+1234567890"},
                {"email": "customer@example.com", "phoneNumber": None},
                {"email": None, "phoneNumber": "123456"},
            ]
        }


class ContactResponse(BaseModel):
    """
    Consolidated view of one identity cluster
    """
    primaryContactId: int = Field(
        description="ID of the primary contact"
    )
    emails: List[str] = Field(
        description="Distinct emails of the cluster, primary's first",
        examples=[["customer@example.com", "customer2@example.com"]]
    )
    phoneNumbers: List[str] = Field(
        description="Distinct phone numbers of the cluster, primary's first",
        examples=[["123456", "654321"]]
    )
    secondaryContactIds: List[int] = Field(
        description="IDs of all secondary contacts linked to the primary, oldest first",
        examples=[[2, 3, 4]]
    )


class IdentifyResponse(BaseModel):
    """
    Response schema for the /identify endpoint
    """
    contact: ContactResponse = Field(
        description="Consolidated contact information"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "contact": {
                    "primaryContactId": 1,
                    "emails": ["customer@example.com", "customer2@example.com"],
                    "phoneNumbers": ["123456", "654321"],
                    "secondaryContactIds": [2, 3]
                }
            }
        }


class ErrorResponse(BaseModel):
    """
    Error response schema for API errors
    """
    error: str = Field(
        description="Error type or category"
    )
    message: str = Field(
        description="Human-readable error message"
    )
    details: Optional[Dict[str, Any]] = Field(
        None,
        description="Additional error details"
    )

    class Config:
        json_schema_extra = {
            "examples": [
                {
                    "error": "ValidationError",
                    "message": "Either email or phoneNumber must be provided",
                    "details": {"field": "root"}
                },
                {
                    "error": "StoreUnavailable",
                    "message": "Contact store is currently unavailable"
                }
            ]
        }
