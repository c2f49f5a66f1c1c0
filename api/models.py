"""
API request and response models for tokenguard REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py, which own the internal domain
representation. Route handlers map between the two.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = {}


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class RevokeRequest(BaseModel):
    """Body for logout / revoke endpoints. reason must be a configured blacklist reason."""

    model_config = ConfigDict(str_strip_whitespace=True)

    reason: str = Field(default="LOGOUT", min_length=1, max_length=64)


class WhoAmIResponse(BaseModel):
    """The verified identity behind the request's bearer token."""

    auth_identifier: str
    application_user_id: Optional[str] = None
    email: Optional[str] = None
    email_verified: bool = False
    phone_number: Optional[str] = None
    issuer: str
    issued_at: datetime
    expires_at: datetime
    custom_claims: dict = {}


class BlacklistEntryResponse(BaseModel):
    entry_id: str
    reason: str
    blacklisted_at: datetime
    expires_at: datetime


class RevocationResponse(BaseModel):
    owner_auth_identifier: str
    reason: str
    revoked_at: datetime
    expires_at: datetime
    provider_revoked: bool


class RevocationStatusResponse(BaseModel):
    owner_auth_identifier: str
    revoked: bool
    revoked_at: Optional[datetime] = None
