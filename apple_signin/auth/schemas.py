"""Pydantic schemas for the Sign in with Apple flow."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ProviderConfig(BaseModel):
    """Immutable driver configuration, supplied once per driver.

    Attributes:
        app_id: Services ID sent to Apple as client_id
        team_id: Apple Developer Team ID (client secret issuer)
        client_id: Key ID of the private key (client secret ``kid`` header)
        client_secret: PEM private key used to sign client secrets
        callback_url: Redirect URI registered with Apple
        scopes: Requested scopes; ``None`` means the default ``["email"]``
    """

    model_config = ConfigDict(frozen=True)

    app_id: str = Field(min_length=1, description="OAuth client_id (Services ID)")
    team_id: str = Field(min_length=1, description="Apple Developer Team ID")
    client_id: str = Field(min_length=1, description="Signing key id")
    client_secret: str = Field(min_length=1, repr=False, description="PEM private key")
    callback_url: str = Field(description="Redirect URI")
    scopes: list[str] | None = Field(default=None, description="Requested scopes")


class AuthorizationState(BaseModel):
    """Snapshot of the values Apple posted back to the callback."""

    model_config = ConfigDict(frozen=True)

    state: str | None = None
    code: str | None = None
    error: str | None = None


class AccessTokenResult(BaseModel):
    """Token response from Apple's token endpoint."""

    token: str = Field(description="Opaque access token")
    type: str = Field(default="bearer", description="Token type")
    id_token: str = Field(description="Signed identity token")
    refresh_token: str | None = None
    expires_in: int = Field(default=0, ge=0, description="Lifetime in seconds")
    expires_at: datetime = Field(description="Absolute expiry, computed at fetch time")


class BearerToken(BaseModel):
    """Token attached to a user resolved from a caller-supplied identity token."""

    token: str
    type: Literal["bearer"] = "bearer"


class SigningKey(BaseModel):
    """Public key resolved from Apple's JWKS."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kid: str
    key: Any = Field(description="Public key object accepted by jwt.decode")
    algorithm: str | None = None
    fetched_at: float = Field(description="Monotonic time of the fetch")


class EmbeddedName(BaseModel):
    firstName: str | None = None
    lastName: str | None = None


class EmbeddedUser(BaseModel):
    """User details Apple sends only on the first authorization."""

    email: str | None = None
    name: EmbeddedName | None = None


class DecodedIdentityToken(BaseModel):
    """Verified claims of an Apple identity token.

    https://developer.apple.com/documentation/sign_in_with_apple/sign_in_with_apple_js/incorporating_sign_in_with_apple_into_other_platforms
    """

    model_config = ConfigDict(extra="allow")

    iss: str
    aud: str
    sub: str
    exp: int
    iat: int
    email: str | None = None
    # Apple sends this as the string "true"/"false" on the web flow.
    email_verified: str | bool | None = None
    user: EmbeddedUser | None = None
    at_hash: str | None = None
    is_private_email: str | bool | None = None
    auth_time: int | None = None
    nonce_supported: bool | None = None


class EmailVerificationState(str, Enum):
    VERIFIED = "verified"
    UNVERIFIED = "unverified"


class NormalizedUser(BaseModel):
    """Provider-agnostic user record returned by the driver."""

    id: str
    nick_name: str
    name: str = ""
    email: str | None = None
    email_verification_state: EmailVerificationState = EmailVerificationState.UNVERIFIED
    avatar_url: None = None
    original: None = None
    token: AccessTokenResult | BearerToken | None = None
