"""Credential lifecycle: expiry tracking, silent refresh and fallback.

A stored bundle is in one of four states relative to now:

    absent          nothing stored
    valid           expires_at - now >  buffer
    expiring_soon   0 < expires_at - now <= buffer
    expired         expires_at <= now

get_valid_or_refresh() returns valid bundles as-is and tries a headless
refresh for the other two. When the refresh fails, a bundle that is
inside the buffer but not yet literally expired is still returned, with
a warning; an expired one raises with the interactive-login remediation.

Example:
    manager = CredentialManager(store, LoginFlow(...))
    bundle = await manager.get_valid_or_refresh()
"""

import base64
import binascii
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from tmz.errors import (
    AuthError,
    ClaimError,
    CredentialsExpiredError,
    NotAuthenticatedError,
    StorageError,
    TokenParseError,
)
from tmz.services.credential_store import CredentialBundle, CredentialStore
from tmz.services.login_flow import LoginFlow, extract_tokens

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SECONDS = 300
DEFAULT_REFRESH_TIMEOUT = 60
DEFAULT_LOGIN_TIMEOUT = 300


class CredentialState(str, Enum):
    """Usability of the stored bundle at a point in time."""

    absent = "absent"
    valid = "valid"
    expiring_soon = "expiring_soon"
    expired = "expired"


@dataclass(frozen=True)
class TokenClaims:
    """Identity and expiry claims decoded from a JWT payload."""

    tenant_id: str
    user_id: str
    principal_name: str
    expires_at: int


def _decode_segment(segment: str) -> dict:
    padded = segment + "=" * (-len(segment) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
        claims = json.loads(raw)
    except (binascii.Error, ValueError) as e:
        raise TokenParseError(f"cannot decode token payload: {e}") from e
    if not isinstance(claims, dict):
        raise TokenParseError("token payload is not a JSON object")
    return claims


def parse_token_claims(token: str) -> TokenClaims:
    """Decode the identity claims from a JWT without verifying it.

    Raises:
        TokenParseError: If the token does not have three segments or the
            payload is not base64url JSON.
        ClaimError: If tid, oid or exp is missing.
    """
    parts = token.strip().split(".")
    if len(parts) != 3:
        raise TokenParseError(f"invalid JWT format: expected 3 segments, got {len(parts)}")
    claims = _decode_segment(parts[1])

    tenant_id = claims.get("tid")
    if not isinstance(tenant_id, str) or not tenant_id:
        raise ClaimError("tid")
    user_id = claims.get("oid")
    if not isinstance(user_id, str) or not user_id:
        raise ClaimError("oid")
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, int | float):
        raise ClaimError("exp")

    principal = claims.get("upn") or claims.get("unique_name") or "unknown"
    return TokenClaims(
        tenant_id=tenant_id,
        user_id=user_id,
        principal_name=str(principal),
        expires_at=int(exp),
    )


def classify(bundle: CredentialBundle | None, now: float, buffer_seconds: int) -> CredentialState:
    """State of a bundle at `now` for a given buffer."""
    if bundle is None:
        return CredentialState.absent
    remaining = bundle.expires_at - now
    if remaining <= 0:
        return CredentialState.expired
    if remaining <= buffer_seconds:
        return CredentialState.expiring_soon
    return CredentialState.valid


class CredentialManager:
    """Decides whether stored credentials are usable and refreshes them."""

    def __init__(
        self,
        store: CredentialStore,
        login_flow: LoginFlow,
        buffer_seconds: int = DEFAULT_BUFFER_SECONDS,
        refresh_timeout: int = DEFAULT_REFRESH_TIMEOUT,
        login_timeout: int = DEFAULT_LOGIN_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._login_flow = login_flow
        self._buffer = buffer_seconds
        self._refresh_timeout = refresh_timeout
        self._login_timeout = login_timeout
        self._clock = clock

    @property
    def buffer_seconds(self) -> int:
        return self._buffer

    def now(self) -> float:
        return self._clock()

    def stored(self) -> CredentialBundle | None:
        """The stored bundle regardless of expiry, or None."""
        return self._store.load()

    def state(self, now: float | None = None) -> CredentialState:
        """Current state of the stored bundle."""
        return classify(self._store.load(), self.now() if now is None else now, self._buffer)

    def remaining_seconds(self, bundle: CredentialBundle) -> int:
        """Seconds until literal expiry (negative once expired)."""
        return int(bundle.expires_at - self.now())

    def get_cached(self) -> CredentialBundle:
        """Read the stored bundle without refreshing.

        The buffer is not applied: a bundle expiring in ten seconds is
        returned. Meant for status checks, not for gating long work.

        Raises:
            NotAuthenticatedError: If nothing is stored.
            CredentialsExpiredError: If the bundle is literally expired.
        """
        bundle = self._store.load()
        if bundle is None:
            raise NotAuthenticatedError("not logged in")
        if bundle.expires_at <= self.now():
            raise CredentialsExpiredError("credentials expired")
        return bundle

    async def get_valid_or_refresh(self) -> CredentialBundle:
        """Return a bundle safe for new work, refreshing it when needed.

        Raises:
            NotAuthenticatedError: If nothing is stored.
            CredentialsExpiredError: If refresh failed and the stored
                bundle is past its literal expiry.
        """
        bundle = self._store.load()
        now = self.now()
        state = classify(bundle, now, self._buffer)
        if state is CredentialState.absent:
            raise NotAuthenticatedError("not logged in")
        if state is CredentialState.valid:
            return bundle

        logger.info("Credentials %s, attempting silent refresh", state.value)
        try:
            return await self.refresh()
        except (AuthError, StorageError) as e:
            if bundle.expires_at > self.now():
                logger.warning(
                    "Silent refresh failed (%s); using current credentials, %ds left",
                    e,
                    self.remaining_seconds(bundle),
                )
                return bundle
            raise CredentialsExpiredError(
                f"credentials expired and silent refresh failed: {e.message}"
            ) from e

    async def refresh(self) -> CredentialBundle:
        """Headless refresh through the login script; stores the result.

        Raises:
            RefreshError: If the script fails or times out.
            TokenParseError, ClaimError: If the new tokens are unusable.
            CredentialStorageError: If the new bundle cannot be stored.
        """
        local_storage = await self._login_flow.run(self._refresh_timeout, headless=True)
        bundle = self.store_from_local_storage(local_storage)
        logger.info("Credentials refreshed, valid for %ds", self.remaining_seconds(bundle))
        return bundle

    async def login(self, timeout: int | None = None) -> CredentialBundle:
        """Interactive browser sign-in; stores the result."""
        local_storage = await self._login_flow.run(timeout or self._login_timeout, headless=False)
        return self.store_from_local_storage(local_storage)

    def store_from_local_storage(self, local_storage: dict[str, str]) -> CredentialBundle:
        """Store the tokens found in a login-script localStorage dump."""
        return self.store_tokens(**extract_tokens(local_storage))

    def store_tokens(
        self,
        skype_token: str,
        chat_token: str,
        graph_token: str,
        presence_token: str,
    ) -> CredentialBundle:
        """Build a bundle from raw tokens and store it, replacing any other.

        Identity and expiry come from the skype token's claims.

        Raises:
            AuthError: If any token is empty.
            TokenParseError, ClaimError: If the skype token is unusable.
        """
        tokens = {
            "skype_token": skype_token,
            "chat_token": chat_token,
            "graph_token": graph_token,
            "presence_token": presence_token,
        }
        missing = [name for name, value in tokens.items() if not value or not value.strip()]
        if missing:
            raise AuthError(f"missing required tokens: {', '.join(missing)}")

        claims = parse_token_claims(skype_token)
        bundle = CredentialBundle(
            **{name: value.strip() for name, value in tokens.items()},
            tenant_id=claims.tenant_id,
            user_id=claims.user_id,
            user_principal_name=claims.principal_name,
            expires_at=claims.expires_at,
        )
        self.store(bundle)
        return bundle

    def store(self, bundle: CredentialBundle) -> None:
        """Unconditionally replace the stored bundle."""
        self._store.save(bundle)

    def clear(self) -> None:
        """Remove the stored bundle. Idempotent."""
        self._store.clear()
