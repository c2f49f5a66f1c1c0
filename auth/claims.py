"""
auth/claims.py -- Application custom-claims configuration.

These are the claims this deployment syncs onto provider user records and
reads back out of verified tokens. Another deployment swaps in its own
CustomClaimsConfig without touching the handler or adapter.

Provider attribute stores (Keycloak and friends) often return every value as
a list of strings, so extract() unwraps single-element lists.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional, TypedDict

from auth.models import CustomClaimsConfig

ROLES = ("user", "admin")


class AppClaims(TypedDict):
    app_user_id: Optional[str]
    role: str
    email_verified: bool


def _first(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def extract_app_claims(decoded: Mapping[str, Any]) -> AppClaims:
    app_user_id = _first(decoded.get("app_user_id"))
    return AppClaims(
        app_user_id=str(app_user_id) if app_user_id is not None else None,
        role=_first(decoded.get("role")) or "user",
        email_verified=bool(decoded.get("email_verified", False)),
    )


def validate_app_claims(claims: AppClaims) -> bool:
    if claims["app_user_id"] is not None and not isinstance(claims["app_user_id"], str):
        return False
    return claims["role"] in ROLES


APP_CLAIMS_CONFIG: CustomClaimsConfig[AppClaims] = CustomClaimsConfig(
    extract=extract_app_claims,
    validate=validate_app_claims,
    defaults=AppClaims(app_user_id=None, role="user", email_verified=False),
)
