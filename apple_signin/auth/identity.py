"""Apple identity token verification and user projection.

Verifies identity tokens (RS256) against the key whose id matches the token
header, checks issuer, audience and expiry, and maps the verified claims to
a NormalizedUser.
"""

from __future__ import annotations

import logging
from typing import Any

import jwt
from pydantic import ValidationError

from apple_signin.auth.keys import SigningKeyResolver
from apple_signin.auth.schemas import (
    AccessTokenResult,
    BearerToken,
    DecodedIdentityToken,
    EmailVerificationState,
    NormalizedUser,
)
from apple_signin.config import APPLE_ISSUER
from apple_signin.errors import (
    KeyFetchFailed,
    SigningKeyNotFound,
    TokenVerificationFailed,
)

logger = logging.getLogger(__name__)

IDENTITY_TOKEN_ALGORITHMS = ["RS256"]


class IdentityTokenVerifier:
    """Verifies identity tokens issued to one app id."""

    def __init__(
        self,
        app_id: str,
        resolver: SigningKeyResolver,
        issuer: str = APPLE_ISSUER,
        leeway: int = 0,
    ) -> None:
        """Initialize verifier.

        Args:
            app_id: Expected audience.
            resolver: Source of signing keys.
            issuer: Expected issuer.
            leeway: Clock skew tolerance in seconds for exp/iat.
        """
        self.app_id = app_id
        self.resolver = resolver
        self.issuer = issuer
        self.leeway = leeway

    async def verify(self, identity_token: str) -> DecodedIdentityToken:
        """Verify an identity token and return its claims.

        Args:
            identity_token: The JWT identity token from Apple.

        Returns:
            DecodedIdentityToken with verified claims.

        Raises:
            TokenVerificationFailed: For any decoding, key, signature or
                claim failure. The reason is only logged.
        """
        try:
            header = jwt.get_unverified_header(identity_token)
            signing_key = await self.resolver.get_signing_key(header.get("kid"))

            payload: dict[str, Any] = jwt.decode(
                identity_token,
                signing_key.key,
                algorithms=IDENTITY_TOKEN_ALGORITHMS,
                audience=self.app_id,
                issuer=self.issuer,
                leeway=self.leeway,
                options={"require": ["iss", "aud", "exp", "iat", "sub"]},
            )
            return DecodedIdentityToken.model_validate(payload)
        except jwt.ExpiredSignatureError:
            logger.warning("[APPLE] Identity token has expired")
        except jwt.InvalidAudienceError:
            logger.warning("[APPLE] Identity token audience mismatch")
        except jwt.InvalidIssuerError:
            logger.warning("[APPLE] Identity token issuer mismatch")
        except (SigningKeyNotFound, KeyFetchFailed) as e:
            logger.warning(f"[APPLE] Identity token signing key unavailable: {e}")
        except jwt.InvalidTokenError as e:
            logger.warning(f"[APPLE] Identity token rejected: {e}")
        except ValidationError as e:
            logger.warning(f"[APPLE] Identity token claims malformed: {e.error_count()} errors")
        raise TokenVerificationFailed()


def display_name(first_name: str | None, last_name: str | None) -> str:
    """Join optional name parts: "First Last", "First" or ""."""
    first = first_name or ""
    return f"{first} {last_name}" if last_name else first


def project_user(
    decoded: DecodedIdentityToken,
    token: AccessTokenResult | BearerToken | None = None,
) -> NormalizedUser:
    """Map verified identity token claims to a NormalizedUser.

    Args:
        decoded: Verified claims.
        token: Token to attach to the user (optional).

    Returns:
        NormalizedUser with no avatar; Apple does not provide one.
    """
    name = decoded.user.name if decoded.user else None
    verified = decoded.email_verified == "true"

    return NormalizedUser(
        id=decoded.sub,
        nick_name=decoded.sub,
        name=display_name(
            name.firstName if name else None,
            name.lastName if name else None,
        ),
        email=decoded.email,
        email_verification_state=(
            EmailVerificationState.VERIFIED if verified else EmailVerificationState.UNVERIFIED
        ),
        token=token,
    )
