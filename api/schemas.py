"""
Identity Reconciliation API - Pydantic Schemas
==============================================
Request and response models for the HTTP layer.

Request values are normalized here (email lower-cased and trimmed, phone
numbers reduced to digits and a leading '+') before they reach the engine.
"""

from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator

from reconcile.linking.models import IdentityView, Observation
from reconcile.linking.normalization import (
    is_valid_email,
    is_valid_phone,
    normalize_email,
    normalize_phone,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =====================================================================
# IDENTIFY
# =====================================================================

class IdentifyRequest(BaseModel):
    """Body of POST /identify."""
    email: Optional[str] = Field(None, description="Customer email address")
    phoneNumber: Optional[str] = Field(None, description="Customer phone number")

    @field_validator('email', mode='before')
    @classmethod
    def _clean_email(cls, value):
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("email must be a string")
        email = normalize_email(value)
        if email is not None and not is_valid_email(email):
            raise ValueError("Invalid email format")
        return email

    @field_validator('phoneNumber', mode='before')
    @classmethod
    def _clean_phone(cls, value):
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise ValueError("phoneNumber must be a string or number")
        raw = str(value).strip()
        if not raw:
            return None
        if not is_valid_phone(raw):
            raise ValueError("Invalid phone number format")
        return normalize_phone(raw)

    def to_observation(self) -> Observation:
        return Observation(email=self.email, phone_number=self.phoneNumber)


class ContactSummary(BaseModel):
    """Consolidated identity."""
    primaryContactId: int
    emails: List[str] = []
    phoneNumbers: List[str] = []
    secondaryContactIds: List[int] = []


class IdentifyResponse(BaseModel):
    """Response of POST /identify."""
    contact: ContactSummary

    @classmethod
    def from_view(cls, view: IdentityView) -> "IdentifyResponse":
        return cls(contact=ContactSummary(**view.to_dict()))


# =====================================================================
# HEALTH & META SCHEMAS
# =====================================================================

class HealthStatus(BaseModel):
    """Health check response."""
    status: str = Field(description="Overall API status")
    store: str = Field(description="Contact store status")
    backend: str = Field(description="Contact store backend")
    version: str = Field(description="API version")
    timestamp: datetime = Field(default_factory=_utc_now)


class ContactStats(BaseModel):
    """Contact counts by precedence."""
    total_contacts: int
    primary_contacts: int
    secondary_contacts: int


# =====================================================================
# ERRORS
# =====================================================================

class ErrorDetail(BaseModel):
    message: str
    code: str
    details: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Body returned for every failed request."""
    error: ErrorDetail
    timestamp: datetime = Field(default_factory=_utc_now)
    path: str

    def to_content(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', exclude_none=False)
