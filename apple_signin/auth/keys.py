"""Apple signing key resolution.

Fetches Apple's JWKS and caches the public keys by key id. The cache is
governed by an explicit CachePolicy (entry bound, max age, fetch rate limit)
and is shared process-wide through get_key_resolver().

Concurrent misses on one event loop may each trigger a fetch. That is
tolerated: every fetch writes the same key set, so the cache converges.
"""

from __future__ import annotations

import base64
import logging
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Any, Callable

import httpx
import jwt
from cryptography import x509

from apple_signin.auth.schemas import SigningKey
from apple_signin.config import APPLE_JWKS_URL
from apple_signin.errors import KeyFetchFailed, SigningKeyNotFound

logger = logging.getLogger(__name__)

_RATE_LIMIT_WINDOW = 60.0


@dataclass(frozen=True)
class CachePolicy:
    """Bounds for the signing key cache.

    Attributes:
        max_entries: Maximum number of keys kept; oldest fetched go first
        max_age: Seconds a cached key stays fresh
        rate_limit: Maximum key set fetches per minute, 0 to disable
    """

    max_entries: int = 100
    max_age: float = 60 * 60 * 24
    rate_limit: int = 10

    def __post_init__(self) -> None:
        if self.max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if self.max_age < 0 or self.rate_limit < 0:
            raise ValueError("max_age and rate_limit must not be negative")


def public_key_from_jwk(jwk: dict[str, Any]) -> tuple[Any, str | None]:
    """Resolve a JWK to a public key object.

    Certificate-only entries (``x5c`` without RSA components) are read from
    the leaf certificate; everything else goes through PyJWK.

    Returns:
        (public_key, algorithm)
    """
    if jwk.get("x5c") and "n" not in jwk:
        cert = x509.load_der_x509_certificate(base64.b64decode(jwk["x5c"][0]))
        return cert.public_key(), jwk.get("alg")

    parsed = jwt.PyJWK(jwk)
    return parsed.key, parsed.algorithm_name


class SigningKeyResolver:
    """Fetch-and-cache resolver for a JWKS endpoint."""

    def __init__(
        self,
        jwks_url: str = APPLE_JWKS_URL,
        policy: CachePolicy | None = None,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize resolver.

        Args:
            jwks_url: Key set URL.
            policy: Cache bounds (default: 100 entries, 24h, 10 fetches/min).
            timeout: HTTP timeout for key set fetches in seconds.
            http_client: Client to use instead of an owned one (optional).
            clock: Monotonic time source.
        """
        self.jwks_url = jwks_url
        self.policy = policy or CachePolicy()
        self.timeout = timeout
        self._clock = clock
        self._client = http_client
        self._owns_client = http_client is None
        self._keys: OrderedDict[str, SigningKey] = OrderedDict()
        self._fetches: deque[float] = deque()

    @property
    def client(self) -> httpx.AsyncClient:
        """Get httpx async client (lazy initialization)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this resolver created it."""
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    @property
    def cached_count(self) -> int:
        """Number of keys currently held, fresh or not."""
        return len(self._keys)

    def clear(self) -> None:
        """Drop every cached key and the fetch history."""
        self._keys.clear()
        self._fetches.clear()

    def cached(self, kid: str) -> SigningKey | None:
        """Return the cached key for ``kid`` if it is still fresh."""
        entry = self._keys.get(kid)
        if entry is None:
            return None
        if self._clock() - entry.fetched_at > self.policy.max_age:
            logger.debug(f"[JWKS] Cached key {kid} expired")
            del self._keys[kid]
            return None
        return entry

    async def get_signing_key(self, kid: str | None) -> SigningKey:
        """Resolve the public key for a key id.

        Args:
            kid: Key id from the token header.

        Returns:
            SigningKey with a key object usable by jwt.decode.

        Raises:
            SigningKeyNotFound: If the key set has no key with this id.
            KeyFetchFailed: If the key set could not be fetched.
        """
        if not kid:
            raise SigningKeyNotFound(kid)

        entry = self.cached(kid)
        if entry is not None:
            return entry

        keys = await self.fetch_keys()
        if kid not in keys:
            logger.warning(f"[JWKS] Key {kid} not in key set from {self.jwks_url}")
            raise SigningKeyNotFound(kid)
        return keys[kid]

    async def fetch_keys(self) -> dict[str, SigningKey]:
        """Fetch the key set and refill the cache.

        Returns:
            Keys from this fetch, by key id.

        Raises:
            KeyFetchFailed: On rate limit, transport, HTTP or payload errors.
        """
        self._acquire_fetch_slot()

        try:
            response = await self.client.get(self.jwks_url, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"[JWKS] Key set fetch returned {e.response.status_code}")
            raise KeyFetchFailed(
                f"Key set fetch failed with HTTP {e.response.status_code}",
                status_code=503,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"[JWKS] Key set fetch failed: {e!r}")
            raise KeyFetchFailed(f"Key set fetch failed: {e!r}") from e
        except ValueError as e:
            raise KeyFetchFailed("Key set response is not valid JSON") from e

        if not isinstance(payload, dict) or not isinstance(payload.get("keys"), list):
            raise KeyFetchFailed("Key set response has no keys")

        now = self._clock()
        fetched: dict[str, SigningKey] = {}
        for jwk in payload["keys"]:
            kid = jwk.get("kid") if isinstance(jwk, dict) else None
            if not kid or jwk.get("use", "sig") != "sig":
                continue
            try:
                key, algorithm = public_key_from_jwk(jwk)
            except (jwt.PyJWTError, ValueError, KeyError, TypeError) as e:
                logger.warning(f"[JWKS] Skipping unusable key {kid}: {e}")
                continue
            fetched[kid] = SigningKey(kid=kid, key=key, algorithm=algorithm, fetched_at=now)

        logger.info(f"[JWKS] Fetched {len(fetched)} signing keys from {self.jwks_url}")
        for kid, entry in fetched.items():
            self._store(kid, entry)
        return fetched

    def _store(self, kid: str, entry: SigningKey) -> None:
        self._keys.pop(kid, None)
        self._keys[kid] = entry
        while len(self._keys) > self.policy.max_entries:
            evicted, _ = self._keys.popitem(last=False)
            logger.debug(f"[JWKS] Evicted key {evicted}")

    def _acquire_fetch_slot(self) -> None:
        if not self.policy.rate_limit:
            return
        now = self._clock()
        while self._fetches and now - self._fetches[0] >= _RATE_LIMIT_WINDOW:
            self._fetches.popleft()
        if len(self._fetches) >= self.policy.rate_limit:
            logger.warning(f"[JWKS] Rate limit of {self.policy.rate_limit} fetches/min reached")
            raise KeyFetchFailed("Too many key set requests", status_code=429)
        self._fetches.append(now)


# Process-wide resolvers, one per key set URL, policy and timeout
_resolvers: dict[tuple[str, CachePolicy, float], SigningKeyResolver] = {}


def get_key_resolver(
    jwks_url: str = APPLE_JWKS_URL,
    policy: CachePolicy | None = None,
    timeout: float = 10.0,
) -> SigningKeyResolver:
    """Get or create the shared resolver for a key set URL.

    Callers asking for a different policy or timeout get their own resolver,
    so settings are never silently dropped.
    """
    policy = policy or CachePolicy()
    key = (jwks_url, policy, float(timeout))
    resolver = _resolvers.get(key)
    if resolver is None:
        resolver = SigningKeyResolver(jwks_url, policy=policy, timeout=timeout)
        _resolvers[key] = resolver
    return resolver
