"""Client secret generation for Apple's token endpoint.

Apple does not accept a static client secret. Each token request carries a
short-lived ES256 JWT signed with the developer's private key:
https://developer.apple.com/documentation/sign_in_with_apple/generate_and_validate_tokens
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import jwt

from apple_signin.auth.schemas import ProviderConfig
from apple_signin.config import APPLE_ISSUER, MAX_CLIENT_SECRET_TTL
from apple_signin.errors import ClientSecretConfigError

logger = logging.getLogger(__name__)

CLIENT_SECRET_ALGORITHM = "ES256"


class ClientSecretSigner:
    """Signs client secret assertions for one ProviderConfig.

    Secrets are never cached: every call signs a fresh token so the
    expiry Apple checks is always a few seconds away at most.
    """

    def __init__(self, config: ProviderConfig, ttl: int = 60) -> None:
        """Initialize signer.

        Args:
            config: Driver configuration holding the key material.
            ttl: Lifetime of each secret in seconds (1-300).
        """
        if not 0 < ttl <= MAX_CLIENT_SECRET_TTL:
            raise ValueError(f"Client secret ttl must be within 1..{MAX_CLIENT_SECRET_TTL}s")
        self.config = config
        self.ttl = ttl

    def generate_client_secret(self) -> str:
        """Sign a new client secret.

        Returns:
            Encoded ES256 JWT.

        Raises:
            ClientSecretConfigError: If the private key cannot sign.
        """
        now = datetime.now(timezone.utc)
        payload = {
            "iss": self.config.team_id,
            "iat": now,
            "exp": now + timedelta(seconds=self.ttl),
            "aud": APPLE_ISSUER,
            "sub": self.config.app_id,
        }
        try:
            return jwt.encode(
                payload,
                self.config.client_secret,
                algorithm=CLIENT_SECRET_ALGORITHM,
                headers={"kid": self.config.client_id},
            )
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            logger.error(f"[APPLE] Unable to sign client secret with key {self.config.client_id}: {e}")
            raise ClientSecretConfigError(
                f"Invalid private key for APPLE_CLIENT_ID {self.config.client_id}: {e}"
            ) from e
