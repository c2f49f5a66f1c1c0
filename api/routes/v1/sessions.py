"""
api/routes/v1/sessions.py -- Session and revocation endpoints.

Routes:
  GET  /api/v1/sessions/me                           -- verified identity (requires auth)
  POST /api/v1/sessions/logout                       -- blacklist the presented token
  POST /api/v1/sessions/logout-all                   -- revoke every token of the caller
  POST /api/v1/admin/users/{auth_identifier}/revoke  -- revoke every token of a user (admin only)
  GET  /api/v1/admin/users/{auth_identifier}/revocation -- revocation status (admin only)

Handlers are plain def functions: the token store is synchronous, so FastAPI
runs them in its worker thread pool.

Errors:
  An unconfigured reason raises InvalidBlacklistReason -> 422 (api/main.py).
  A storage failure on a write raises TokenStorageError -> 503; the caller must
  not assume the revocation happened.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import (
    BlacklistEntryResponse,
    RevocationResponse,
    RevocationStatusResponse,
    RevokeRequest,
    WhoAmIResponse,
)
from auth.dependencies import bearer_token, get_current_token, get_token_handler, require_admin
from auth.models import NormalizedToken

router = APIRouter()


def _custom_claims_dict(token: NormalizedToken) -> dict:
    return dict(token.custom_claims) if isinstance(token.custom_claims, dict) else {}


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/sessions/me", response_model=WhoAmIResponse)
def whoami(token: NormalizedToken = Depends(get_current_token)) -> WhoAmIResponse:
    """Return the normalized identity for the current bearer token."""
    return WhoAmIResponse(
        auth_identifier=token.auth_identifier,
        application_user_id=token.application_user_id,
        email=token.email,
        email_verified=token.email_verified,
        phone_number=token.phone_number,
        issuer=token.issuer,
        issued_at=token.issued_at,
        expires_at=token.expires_at,
        custom_claims=_custom_claims_dict(token),
    )


@router.post("/sessions/logout", response_model=BlacklistEntryResponse, status_code=201)
def logout(
    request: Request,
    body: RevokeRequest | None = None,
    token: NormalizedToken = Depends(get_current_token),
) -> BlacklistEntryResponse:
    """Blacklist the token that authenticated this request until it expires."""
    handler = get_token_handler(request)
    raw = bearer_token(request)
    reason = body.reason if body is not None else "LOGOUT"
    entry = handler.blacklist_token(
        handler.get_token_identifier(raw),
        token.auth_identifier,
        reason,
        token.expires_at,
        None,
    )
    return BlacklistEntryResponse(
        entry_id=entry.entry_id,
        reason=entry.reason,
        blacklisted_at=entry.blacklisted_at,
        expires_at=entry.expires_at,
    )


@router.post("/sessions/logout-all", response_model=RevocationResponse, status_code=201)
def logout_all(
    request: Request,
    body: RevokeRequest | None = None,
    token: NormalizedToken = Depends(get_current_token),
) -> RevocationResponse:
    """Revoke every token the caller holds, including this one.

    The global revocation is written first; provider-side revocation is a
    best-effort extra that stops refresh tokens where the provider supports it.
    """
    handler = get_token_handler(request)
    reason = body.reason if body is not None else "LOGOUT"
    revocation = handler.blacklist_all_user_tokens(token.auth_identifier, reason, None)
    provider_revoked = handler.revoke_user_tokens(token.auth_identifier)
    return RevocationResponse(
        owner_auth_identifier=revocation.owner_auth_identifier,
        reason=revocation.reason,
        revoked_at=revocation.revoked_at,
        expires_at=revocation.expires_at,
        provider_revoked=provider_revoked,
    )


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------


@router.post("/admin/users/{auth_identifier}/revoke", response_model=RevocationResponse, status_code=201)
def admin_revoke(
    request: Request,
    auth_identifier: str,
    body: RevokeRequest,
    admin: NormalizedToken = Depends(require_admin),
) -> RevocationResponse:
    """Revoke every token of another user. The acting admin is recorded."""
    handler = get_token_handler(request)
    revocation = handler.blacklist_all_user_tokens(
        auth_identifier,
        body.reason,
        admin.application_user_id or admin.auth_identifier,
    )
    provider_revoked = handler.revoke_user_tokens(auth_identifier)
    return RevocationResponse(
        owner_auth_identifier=revocation.owner_auth_identifier,
        reason=revocation.reason,
        revoked_at=revocation.revoked_at,
        expires_at=revocation.expires_at,
        provider_revoked=provider_revoked,
    )


@router.get("/admin/users/{auth_identifier}/revocation", response_model=RevocationStatusResponse)
def revocation_status(
    request: Request,
    auth_identifier: str,
    admin: NormalizedToken = Depends(require_admin),
) -> RevocationStatusResponse:
    """Report whether the user has an active global revocation."""
    revoked_at = get_token_handler(request).get_user_token_revocation_time(auth_identifier)
    return RevocationStatusResponse(
        owner_auth_identifier=auth_identifier,
        revoked=revoked_at is not None,
        revoked_at=revoked_at,
    )
