"""
auth/dependencies.py -- FastAPI Depends() helpers backed by TokenHandler.

The handler is built once in the API lifespan and stored on
app.state.token_handler; these helpers read it from there, so no module-level
handler exists.

try_verify_request() is the soft variant (None when no bearer token is sent).
get_current_token() raises HTTP 401 with the taxonomy code on rejection.
require_admin() additionally raises HTTP 403 unless the role claim is "admin".

Only the error code reaches the client. Raw provider errors and token
material never appear in a response.

Layer rule: may import from fastapi (Depends/HTTPException/Request) because
this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.handler import TokenHandler
from auth.models import NormalizedToken, VerificationResult

_MESSAGES = {
    "EXPIRED": "Token has expired.",
    "INVALID_SIGNATURE": "Token signature is invalid.",
    "BLACKLISTED": "Token has been revoked.",
    "MALFORMED": "Token is malformed.",
    "ISSUER_MISMATCH": "Token was not issued for this service.",
    "UNKNOWN": "Token could not be verified.",
}


def bearer_token(request: Request) -> str | None:
    """Return the token from 'Authorization: Bearer <token>' (scheme case-insensitive), or None."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_token_handler(request: Request) -> TokenHandler:
    return request.app.state.token_handler


def try_verify_request(request: Request) -> VerificationResult | None:
    """Verify the request's bearer token. Returns None if no token was sent."""
    token = bearer_token(request)
    if token is None:
        return None
    return get_token_handler(request).verify_and_unpack(token)


def get_current_token(request: Request) -> NormalizedToken:
    """Require a valid bearer token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(token: NormalizedToken = Depends(get_current_token)): ...
    """
    result = try_verify_request(request)
    if result is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not result.is_valid or result.token is None:
        code = result.error.value if result.error is not None else "UNKNOWN"
        raise HTTPException(
            status_code=401,
            detail={"code": code.lower(), "message": _MESSAGES.get(code, _MESSAGES["UNKNOWN"])},
            headers={"WWW-Authenticate": 'Bearer error="invalid_token"'},
        )
    return result.token


def require_admin(request: Request) -> NormalizedToken:
    """Require a valid token whose role claim is "admin". 401 / 403 otherwise."""
    token = get_current_token(request)
    claims = token.custom_claims if isinstance(token.custom_claims, dict) else {}
    if claims.get("role") != "admin":
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return token
