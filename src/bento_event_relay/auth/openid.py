"""OpenID Connect token verification with a cached discovery document.

Learn: Instead of asking an authorization service on every connect, we
verify the client's JWT ourselves:
1. Fetch the provider's discovery document (issuer + jwks_uri)
2. Fetch the signing key set from jwks_uri
3. Verify signature, expiry, issuer and audience with PyJWT

Steps 1-2 are cached for OPENID_CONFIG_EXPIRY seconds (an hour by default).
An expired entry is refreshed once, under a lock, before the check
proceeds. Concurrent handshakes share a single refresh.

A token signed with a key we have never seen usually means the provider
rotated its keys. The key set is then refetched early, at most once per
KEY_REFRESH_COOLDOWN seconds, so forged key ids can't hammer the provider.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
import jwt
import structlog

from bento_event_relay.auth.gate import AuthorityUnavailable, AuthorizationGate

logger = structlog.get_logger()

# Asymmetric algorithms only; an HMAC "key" from a JWKS would be public
SUPPORTED_ALGORITHMS = ["RS256", "RS384", "RS512", "PS256", "PS384", "PS512", "ES256", "ES384", "ES512"]

# Minimum gap between early key-set refetches triggered by unknown key ids
KEY_REFRESH_COOLDOWN = 30.0


@dataclass
class DiscoveryEntry:
    issuer: str
    jwks_uri: str
    jwks: jwt.PyJWKSet
    fetched_at: float


class DiscoveryCache:
    """Discovery document + signing keys for one provider, with expiry.

    Entries are keyed by discovery URL; a deployment points at a single
    provider, so in practice that is one entry per issuer.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        config_url: str,
        expiry_seconds: int = 3600,
        clock: Callable[[], float] = time.monotonic,
        key_refresh_cooldown: float = KEY_REFRESH_COOLDOWN,
    ):
        self.http = http
        self.config_url = config_url
        self.expiry_seconds = expiry_seconds
        self._clock = clock
        self.key_refresh_cooldown = key_refresh_cooldown
        self._keys_refreshed_at: Optional[float] = None
        self._entries: dict[str, DiscoveryEntry] = {}
        self._lock = asyncio.Lock()

    def _fresh(self, entry: Optional[DiscoveryEntry]) -> bool:
        return entry is not None and self._clock() - entry.fetched_at < self.expiry_seconds

    async def get(self) -> DiscoveryEntry:
        """Cached entry, refreshed first if missing or expired.

        Raises AuthorityUnavailable when the refresh fails.
        """
        entry = self._entries.get(self.config_url)
        if self._fresh(entry):
            return entry

        async with self._lock:
            # Another handshake may have refreshed while we waited
            entry = self._entries.get(self.config_url)
            if self._fresh(entry):
                return entry

            entry = await self._fetch()
            self._entries[self.config_url] = entry
            logger.info("auth.openid_config_refreshed", issuer=entry.issuer)
            return entry

    async def refresh_keys(self, stale: DiscoveryEntry) -> DiscoveryEntry:
        """Refetch the signing keys ahead of expiry (the provider rotated them).

        Returns the current entry unchanged if another handshake already
        replaced `stale`, or if the last early refetch was less than
        key_refresh_cooldown seconds ago.
        Raises AuthorityUnavailable when the refetch fails.
        """
        async with self._lock:
            current = self._entries.get(self.config_url)
            if current is not None and current is not stale:
                return current

            now = self._clock()
            if (
                self._keys_refreshed_at is not None
                and now - self._keys_refreshed_at < self.key_refresh_cooldown
            ):
                return stale
            self._keys_refreshed_at = now

            entry = DiscoveryEntry(
                issuer=stale.issuer,
                jwks_uri=stale.jwks_uri,
                jwks=await self._fetch_keys(stale.jwks_uri),
                fetched_at=stale.fetched_at,
            )
            self._entries[self.config_url] = entry
            logger.info("auth.openid_keys_refreshed", issuer=entry.issuer)
            return entry

    async def _get_json(self, url: str) -> dict:
        try:
            resp = await self.http.get(url)
        except httpx.HTTPError as e:
            raise AuthorityUnavailable("unreachable", f"{url}: {type(e).__name__}: {e}")

        if not resp.is_success:
            raise AuthorityUnavailable(
                "error_status", f"{url}: {resp.text[:200]}", status_code=resp.status_code
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise AuthorityUnavailable("bad_response", f"{url}: {e}")
        if not isinstance(data, dict):
            raise AuthorityUnavailable("bad_response", f"{url}: expected a JSON object")
        return data

    async def _fetch(self) -> DiscoveryEntry:
        config = await self._get_json(self.config_url)
        issuer = config.get("issuer")
        jwks_uri = config.get("jwks_uri")
        if not issuer or not jwks_uri:
            raise AuthorityUnavailable(
                "bad_response", "discovery document has no issuer or jwks_uri"
            )

        return DiscoveryEntry(
            issuer=issuer,
            jwks_uri=jwks_uri,
            jwks=await self._fetch_keys(jwks_uri),
            fetched_at=self._clock(),
        )

    async def _fetch_keys(self, jwks_uri: str) -> jwt.PyJWKSet:
        jwks_data = await self._get_json(jwks_uri)
        try:
            return jwt.PyJWKSet.from_dict(jwks_data)
        except (jwt.PyJWKError, jwt.PyJWKSetError) as e:
            raise AuthorityUnavailable("bad_response", f"{jwks_uri}: {e}")


class TokenError(Exception):
    """Raised when a token fails local verification."""


class UnknownSigningKey(TokenError):
    """The token names a key id that isn't in the cached key set."""


def _signing_key(jwks: jwt.PyJWKSet, token: str) -> jwt.PyJWK:
    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Malformed token: {e}")

    if kid is None:
        if len(jwks.keys) == 1:
            return jwks.keys[0]
        raise TokenError("Token has no kid and the key set has several keys")

    try:
        return jwks[kid]
    except KeyError:
        raise UnknownSigningKey(f"Unknown signing key: {kid}")


def verify_token(token: str, entry: DiscoveryEntry, audience: str) -> dict:
    """Verify and decode a JWT against the provider's keys.

    Returns the payload dict on success.
    Raises TokenError on failure.
    """
    key = _signing_key(entry.jwks, token)
    try:
        return jwt.decode(
            token,
            key.key,
            algorithms=SUPPORTED_ALGORITHMS,
            audience=audience,
            issuer=entry.issuer,
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")


class OpenIDGate(AuthorizationGate):
    strategy = "openid"

    def __init__(self, cache: DiscoveryCache, audience: str):
        self.cache = cache
        self.audience = audience

    async def _check(self, credential: Optional[str]) -> bool:
        if not credential:
            return False

        entry = await self.cache.get()
        try:
            try:
                payload = verify_token(credential, entry, self.audience)
            except UnknownSigningKey:
                entry = await self.cache.refresh_keys(entry)
                payload = verify_token(credential, entry, self.audience)
        except TokenError as e:
            logger.info("auth.invalid_token", strategy=self.strategy, error=str(e))
            return False

        logger.debug("auth.token_verified", sub=payload.get("sub"))
        return True
