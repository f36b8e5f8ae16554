from datetime import datetime
from enum import Enum
from typing import Optional, List, Any

from pydantic import BaseModel, field_validator, model_validator


def normalize_field(value: Any) -> Optional[str]:
    """Turn a raw email/phone value into a stripped string, or None when blank.

    Numbers become their decimal string form so ``919191`` and ``"919191"``
    match the same stored contact.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("must be a string or a number")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, (str, int, float)):
        raise ValueError("must be a string or a number")
    value = str(value).strip()
    return value or None


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Contact(BaseModel):
    id: int
    phoneNumber: Optional[str] = None
    email: Optional[str] = None
    linkedId: Optional[int] = None
    linkPrecedence: LinkPrecedence
    createdAt: datetime
    updatedAt: datetime
    deletedAt: Optional[datetime] = None

    @property
    def is_primary(self) -> bool:
        return self.linkPrecedence == LinkPrecedence.PRIMARY


class IdentifyRequest(BaseModel):
    email: Optional[str] = None
    phoneNumber: Optional[str] = None

    @field_validator("email", "phoneNumber", mode="before")
    @classmethod
    def _normalize(cls, value):
        return normalize_field(value)

    @model_validator(mode="after")
    def _require_one(self):
        if self.email is None and self.phoneNumber is None:
            raise ValueError("At least one of email or phoneNumber must be provided")
        return self


class ContactResponse(BaseModel):
    # the misspelled key is part of the public contract
    primaryContatctId: int
    emails: List[str]
    phoneNumbers: List[str]
    secondaryContactIds: List[int]


class FinalResponse(BaseModel):
    contact: ContactResponse


class ErrorResponse(BaseModel):
    status: str = "error"
    message: str
