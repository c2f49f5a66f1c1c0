"""
auth/jose_adapter.py -- JWT/OIDC provider adapter built on python-jose.

Verification:
  Signature, exp, iat, iss and (when configured) aud are all checked by
  jose.jwt.decode(). iat and exp are required: the global-revocation check
  compares iat against the user's cut-off, and a token without it could not
  be placed before or after that instant.

Keys come from a resolver:
  StaticKeyResolver -- one shared secret or PEM key (HS256 / single RSA key).
  JWKSKeyResolver   -- the provider's JWKS document, fetched with requests,
                       cached for cache_seconds, refetched once on an unknown
                       kid (key rotation) and served stale if the provider is
                       unreachable.

Token identifier:
  SHA-256 hex of the raw token string. Derivable without verifying anything,
  so expired or forged tokens still map to the same blacklist key.

Error mapping:
  jose raises JWTError subclasses whose class and message tell the failure
  apart. map_provider_error() turns them into TokenVerificationError; nothing
  provider-specific escapes the adapter.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import copy
import hashlib
import logging
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, Union

import requests
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JOSEError, JWTClaimsError

from auth.adapter import (
    ProviderAdminError,
    ProviderKeyError,
    ProviderRevokedError,
    TokenAdapter,
    extract_auth_identifier,
)
from auth.models import ClaimsT, CustomClaimsConfig, NormalizedToken, TokenVerificationError
from auth.provider_admin import ProviderAdminClient

logger = logging.getLogger("tokenguard.provider")

VerificationKey = Union[str, Mapping[str, Any]]

# Substrings of jose error messages, lower-cased.
_SIGNATURE_HINTS = ("signature", "alg")
_MALFORMED_HINTS = ("segments", "padding", "header", "payload", "decod", "json", "invalid token", "missing required")
_AUDIENCE_HINTS = ("issuer", "audience")
_MAX_TIMESTAMP = int(datetime.max.replace(tzinfo=timezone.utc).timestamp())


# ---------------------------------------------------------------------------
# Key resolution
# ---------------------------------------------------------------------------


class KeyResolver(Protocol):
    def resolve(self, raw_token: str) -> VerificationKey: ...


class StaticKeyResolver:
    """Always returns the same key. Used for shared-secret (HS*) deployments."""

    def __init__(self, key: VerificationKey) -> None:
        if not key:
            raise ValueError("StaticKeyResolver requires a non-empty key.")
        self._key = key

    def resolve(self, raw_token: str) -> VerificationKey:
        return self._key


class JWKSKeyResolver:
    """Select the verification key for a token from the provider's JWKS.

    The cached document is replaced wholesale (one attribute assignment), so
    concurrent verifications never see a half-updated cache and no lock is
    needed. A duplicate fetch under a race is harmless.
    """

    def __init__(
        self,
        jwks_url: str,
        cache_seconds: int = 3600,
        session: Optional[requests.Session] = None,
        timeout: int = 10,
    ) -> None:
        self.jwks_url = jwks_url
        self.cache_seconds = cache_seconds
        self._timeout = timeout
        if session is None:
            session = requests.Session()
            session.max_redirects = 3
        self._session = session
        self._cache: Optional[tuple[float, dict[str, Any]]] = None

    def get_jwks(self, force: bool = False) -> dict[str, Any]:
        """Return the JWKS document, from cache when fresh.

        On fetch failure a stale cached document is returned if one exists;
        otherwise the requests exception propagates (mapped to UNKNOWN).
        """
        now = time.monotonic()
        if not force and self._cache is not None and now - self._cache[0] < self.cache_seconds:
            return self._cache[1]
        try:
            resp = self._session.get(self.jwks_url, timeout=self._timeout)
            resp.raise_for_status()
            jwks = resp.json()
        except (requests.RequestException, ValueError) as e:
            if self._cache is not None:
                logger.warning("JWKS refresh failed (%s); using stale keys", e.__class__.__name__)
                return self._cache[1]
            raise
        self._cache = (now, jwks)
        logger.info("JWKS refreshed (%d keys)", len(jwks.get("keys", [])))
        return jwks

    def resolve(self, raw_token: str) -> VerificationKey:
        kid = jwt.get_unverified_header(raw_token).get("kid")
        if not kid:
            raise ProviderKeyError("token header has no kid")
        key = self._find(self.get_jwks(), kid)
        if key is None:
            # Unknown kid usually means the provider rotated keys since our last fetch.
            key = self._find(self.get_jwks(force=True), kid)
        if key is None:
            raise ProviderKeyError(f"no JWKS key for kid {kid!r}")
        return key

    @staticmethod
    def _find(jwks: Mapping[str, Any], kid: str) -> Optional[Mapping[str, Any]]:
        for key in jwks.get("keys", []):
            if key.get("kid") == kid:
                return key
        return None


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _timestamp(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class JoseTokenAdapter(TokenAdapter[ClaimsT]):
    """TokenAdapter for any issuer of signed JWTs (OIDC providers, in-house issuers).

    Args:
        key_resolver:  Supplies the verification key for each token.
        algorithms:    Accepted JWS algorithms. Never accept "none".
        issuer:        Expected iss claim; "" disables the issuer check.
        audience:      Expected aud claim; "" disables the audience check.
        leeway:        Clock-skew allowance in seconds for exp/iat/nbf.
        admin_client:  Optional provider admin API for claims sync and revocation.
    """

    provider_name = "jose"

    def __init__(
        self,
        key_resolver: KeyResolver,
        algorithms: list[str],
        issuer: str = "",
        audience: str = "",
        leeway: int = 0,
        admin_client: Optional[ProviderAdminClient] = None,
    ) -> None:
        if not algorithms or any(a.lower() == "none" for a in algorithms):
            raise ValueError("algorithms must be a non-empty list without 'none'.")
        self._key_resolver = key_resolver
        self._algorithms = list(algorithms)
        self._issuer = issuer
        self._audience = audience
        self._leeway = leeway
        self._admin = admin_client

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_token(self, raw_token: str) -> Mapping[str, Any]:
        key = self._key_resolver.resolve(raw_token)
        claims = jwt.decode(
            raw_token,
            key,
            algorithms=self._algorithms,
            audience=self._audience or None,
            issuer=self._issuer or None,
            options={
                "verify_aud": bool(self._audience),
                "require_iat": True,
                "require_exp": True,
                "leeway": self._leeway,
            },
        )
        for name in ("iat", "exp"):
            if not 0 <= int(claims[name]) <= _MAX_TIMESTAMP:
                raise JWTClaimsError(f"{name} is outside the representable time range")
        if int(claims["iat"]) > int(claims["exp"]):
            raise JWTClaimsError("iat is later than exp")
        logger.debug("Token verified for %s", extract_auth_identifier(claims) or "<no subject>")
        return claims

    def get_token_identifier(self, raw_token: str) -> str:
        return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def normalize_token(
        self,
        decoded: Mapping[str, Any],
        claims_config: CustomClaimsConfig[ClaimsT],
    ) -> NormalizedToken[ClaimsT]:
        custom_claims = self._extract_custom_claims(decoded, claims_config)
        return NormalizedToken(
            auth_identifier=extract_auth_identifier(decoded),
            application_user_id=self._application_user_id(decoded, custom_claims),
            email=decoded.get("email") or None,
            email_verified=_as_bool(decoded.get("email_verified", False)),
            phone_number=decoded.get("phone_number") or None,
            issued_at=_timestamp(decoded["iat"]),
            expires_at=_timestamp(decoded["exp"]),
            issuer=str(decoded.get("iss") or self.provider_name),
            custom_claims=custom_claims,
            raw_claims=dict(decoded),
        )

    @staticmethod
    def _extract_custom_claims(decoded: Mapping[str, Any], claims_config: CustomClaimsConfig[ClaimsT]) -> ClaimsT:
        """Run extract/validate, falling back to a copy of the defaults on any problem.

        Malformed application claims must degrade the token's app data, not
        fail authentication, so every exception from the deployment's
        extractor or validator is absorbed here.
        """
        try:
            claims = claims_config.extract(decoded)
            if claims_config.validate is not None and not claims_config.validate(claims):
                logger.warning("Custom claims failed validation; using defaults")
                return copy.deepcopy(claims_config.defaults)
            return claims
        except Exception as e:  # noqa: BLE001
            logger.warning("Custom claims extraction failed (%s); using defaults", e.__class__.__name__)
            return copy.deepcopy(claims_config.defaults)

    @staticmethod
    def _application_user_id(decoded: Mapping[str, Any], custom_claims: Any) -> Optional[str]:
        """Application account id: custom claims first, then a top-level claim, else None (first-time user)."""
        if isinstance(custom_claims, Mapping) and custom_claims.get("app_user_id"):
            return str(custom_claims["app_user_id"])
        if decoded.get("app_user_id"):
            return str(decoded["app_user_id"])
        return None

    # ------------------------------------------------------------------
    # Provider-side operations
    # ------------------------------------------------------------------

    def sync_custom_claims(self, auth_identifier: str, claims: ClaimsT) -> None:
        """Write claims to the provider. Raises ClaimsSyncError on failure.

        Without an admin API the provider cannot hold application claims; the
        call is logged and skipped, and whoever mints tokens must embed them.
        """
        if self._admin is None:
            logger.info("No provider admin API configured; claims for %s not synced", auth_identifier)
            return
        claim_map = claims if isinstance(claims, Mapping) else vars(claims)
        self._admin.set_user_attributes(auth_identifier, claim_map)
        logger.info("Custom claims synced for %s (%d keys)", auth_identifier, len(claim_map))

    def revoke_user_tokens(self, auth_identifier: str) -> bool:
        if self._admin is None:
            logger.info("Provider has no native revocation; relying on global revocation for %s", auth_identifier)
            return False
        try:
            self._admin.logout_user(auth_identifier)
        except ProviderAdminError:
            logger.error("Provider revocation failed for %s", auth_identifier)
            return False
        logger.info("Provider sessions revoked for %s", auth_identifier)
        return True

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    def map_provider_error(self, error: BaseException) -> TokenVerificationError:
        if isinstance(error, ProviderRevokedError):
            return TokenVerificationError.BLACKLISTED
        if isinstance(error, ExpiredSignatureError):
            return TokenVerificationError.EXPIRED
        if isinstance(error, JWTClaimsError):
            message = str(error).lower()
            if any(hint in message for hint in _AUDIENCE_HINTS):
                return TokenVerificationError.ISSUER_MISMATCH
            return TokenVerificationError.MALFORMED
        if isinstance(error, ProviderKeyError):
            return TokenVerificationError.INVALID_SIGNATURE
        if isinstance(error, JOSEError):
            message = str(error).lower()
            if any(hint in message for hint in _SIGNATURE_HINTS):
                return TokenVerificationError.INVALID_SIGNATURE
            if any(hint in message for hint in _MALFORMED_HINTS):
                return TokenVerificationError.MALFORMED
        return TokenVerificationError.UNKNOWN


def build_jose_adapter(settings) -> JoseTokenAdapter:
    """Construct the adapter from Settings (see core.config)."""
    resolver: KeyResolver
    if settings.token_jwks_url:
        resolver = JWKSKeyResolver(settings.token_jwks_url, cache_seconds=settings.token_jwks_cache_seconds)
    elif settings.token_secret_key:
        resolver = StaticKeyResolver(settings.token_secret_key)
    else:
        resolver = _NoKeyResolver()
    admin = None
    if settings.provider_admin_url and settings.provider_admin_token:
        admin = ProviderAdminClient(settings.provider_admin_url, settings.provider_admin_token)
    return JoseTokenAdapter(
        resolver,
        algorithms=settings.token_algorithms,
        issuer=settings.token_issuer,
        audience=settings.token_audience,
        leeway=settings.token_leeway_seconds,
        admin_client=admin,
    )


class _NoKeyResolver:
    """Debug-mode resolver when no key source is configured: every token is rejected."""

    def resolve(self, raw_token: str) -> VerificationKey:
        raise ProviderKeyError("no verification key configured")
