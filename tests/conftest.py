"""
Pytest configuration and fixtures for the Sign in with Apple driver tests.

Keys are generated per session with cryptography; Apple's endpoints are
replaced by httpx.MockTransport handlers so no test touches the network.
"""
import time
from typing import Any, Callable

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from apple_signin.auth.keys import CachePolicy, SigningKeyResolver
from apple_signin.auth.schemas import ProviderConfig
from apple_signin.config import APPLE_ISSUER
from tests.utils.apple_helpers import (
    APP_ID,
    APPLE_KID,
    CALLBACK_URL,
    KEY_ID,
    SUBJECT,
    TEAM_ID,
    AppleEndpoints,
    rsa_jwk,
)


# ============================================
# Keys
# ============================================

def _pem(private_key) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture(scope="session")
def ec_private_key():
    """P-256 key standing in for the developer's .p8 key."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def ec_private_pem(ec_private_key) -> str:
    return _pem(ec_private_key)


@pytest.fixture(scope="session")
def rsa_private_key():
    """RSA key standing in for Apple's identity token signing key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_rsa_private_key():
    """Unrelated RSA key, never published in the key set."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def jwks(rsa_private_key) -> dict[str, Any]:
    return {"keys": [rsa_jwk(rsa_private_key, APPLE_KID)]}


# ============================================
# Config
# ============================================

@pytest.fixture
def provider_config(ec_private_pem) -> ProviderConfig:
    return ProviderConfig(
        app_id=APP_ID,
        team_id=TEAM_ID,
        client_id=KEY_ID,
        client_secret=ec_private_pem,
        callback_url=CALLBACK_URL,
    )


# ============================================
# Tokens
# ============================================

@pytest.fixture
def make_identity_token(rsa_private_key) -> Callable[..., str]:
    """Factory for identity tokens signed like Apple's.

    Claims passed as None are dropped from the token.
    """

    def factory(key=None, kid: str | None = APPLE_KID, **overrides: Any) -> str:
        now = int(time.time())
        claims = {
            "iss": APPLE_ISSUER,
            "aud": APP_ID,
            "exp": now + 600,
            "iat": now,
            "sub": SUBJECT,
            "email": "user@privaterelay.appleid.com",
            "email_verified": "true",
            "auth_time": now,
            "nonce_supported": True,
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        headers = {"kid": kid} if kid else None
        return jwt.encode(claims, key or rsa_private_key, algorithm="RS256", headers=headers)

    return factory


# ============================================
# HTTP
# ============================================

@pytest.fixture
def apple(jwks) -> AppleEndpoints:
    return AppleEndpoints(jwks)


@pytest.fixture
def http_client(apple) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=apple.transport)


@pytest.fixture
def resolver(http_client) -> SigningKeyResolver:
    return SigningKeyResolver(policy=CachePolicy(rate_limit=0), http_client=http_client)


# ============================================
# Pytest Configuration
# ============================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "fast: Fast unit tests (no external API calls)"
    )
