"""Unit tests for identity token verification and user projection.

Tests for apple_signin/auth/identity.py.

Run with:
    pytest tests/unit/test_identity.py -v
"""

import time

import pytest

from apple_signin.auth.identity import IdentityTokenVerifier, display_name, project_user
from apple_signin.auth.schemas import BearerToken, DecodedIdentityToken, EmailVerificationState
from apple_signin.config import APPLE_ISSUER
from apple_signin.errors import TokenVerificationFailed
from tests.utils.apple_helpers import APP_ID, SUBJECT


def _decoded(**overrides) -> DecodedIdentityToken:
    claims = {
        "iss": APPLE_ISSUER,
        "aud": APP_ID,
        "sub": SUBJECT,
        "exp": 2_000_000_000,
        "iat": 1_700_000_000,
        "email": "user@example.com",
        "email_verified": "true",
    }
    claims.update(overrides)
    return DecodedIdentityToken.model_validate(claims)


@pytest.fixture
def verifier(resolver) -> IdentityTokenVerifier:
    return IdentityTokenVerifier(APP_ID, resolver)


@pytest.mark.fast
class TestIdentityTokenVerifier:
    """Tests for IdentityTokenVerifier.verify."""

    @pytest.mark.asyncio
    async def test_valid_token(self, verifier, make_identity_token):
        decoded = await verifier.verify(make_identity_token())
        assert decoded.sub == SUBJECT
        assert decoded.iss == APPLE_ISSUER
        assert decoded.aud == APP_ID
        assert decoded.email == "user@privaterelay.appleid.com"
        assert decoded.nonce_supported is True

    @pytest.mark.asyncio
    async def test_embedded_user_claim(self, verifier, make_identity_token):
        token = make_identity_token(user={"name": {"firstName": "Ada", "lastName": "Lovelace"}})
        decoded = await verifier.verify(token)
        assert decoded.user.name.firstName == "Ada"

    @pytest.mark.asyncio
    async def test_audience_mismatch(self, verifier, make_identity_token):
        """Valid signature but wrong audience is still rejected."""
        with pytest.raises(TokenVerificationFailed):
            await verifier.verify(make_identity_token(aud="com.other.app"))

    @pytest.mark.asyncio
    async def test_issuer_mismatch(self, verifier, make_identity_token):
        with pytest.raises(TokenVerificationFailed):
            await verifier.verify(make_identity_token(iss="https://evil.example.com"))

    @pytest.mark.asyncio
    async def test_expired(self, verifier, make_identity_token):
        now = int(time.time())
        with pytest.raises(TokenVerificationFailed):
            await verifier.verify(make_identity_token(exp=now - 10, iat=now - 700))

    @pytest.mark.asyncio
    async def test_leeway_accepts_slight_skew(self, resolver, make_identity_token):
        now = int(time.time())
        verifier = IdentityTokenVerifier(APP_ID, resolver, leeway=60)
        decoded = await verifier.verify(make_identity_token(exp=now - 10, iat=now - 700))
        assert decoded.sub == SUBJECT

    @pytest.mark.asyncio
    async def test_signed_by_unpublished_key(self, verifier, make_identity_token, other_rsa_private_key):
        with pytest.raises(TokenVerificationFailed):
            await verifier.verify(make_identity_token(key=other_rsa_private_key))

    @pytest.mark.asyncio
    async def test_unknown_kid(self, verifier, make_identity_token):
        with pytest.raises(TokenVerificationFailed):
            await verifier.verify(make_identity_token(kid="rotated-away"))

    @pytest.mark.asyncio
    async def test_missing_kid(self, verifier, make_identity_token, apple):
        with pytest.raises(TokenVerificationFailed):
            await verifier.verify(make_identity_token(kid=None))
        assert apple.requests == []

    @pytest.mark.asyncio
    async def test_malformed(self, verifier):
        with pytest.raises(TokenVerificationFailed):
            await verifier.verify("not-a-jwt")

    @pytest.mark.asyncio
    async def test_missing_subject(self, verifier, make_identity_token):
        with pytest.raises(TokenVerificationFailed):
            await verifier.verify(make_identity_token(sub=None))

    @pytest.mark.asyncio
    async def test_key_set_unavailable(self, verifier, make_identity_token, apple):
        apple.jwks_status = 503
        with pytest.raises(TokenVerificationFailed):
            await verifier.verify(make_identity_token())

    @pytest.mark.asyncio
    async def test_failure_reason_is_logged(self, verifier, make_identity_token, caplog):
        with pytest.raises(TokenVerificationFailed):
            await verifier.verify(make_identity_token(aud="com.other.app"))
        assert "audience mismatch" in caplog.text


@pytest.mark.fast
class TestDisplayName:
    @pytest.mark.parametrize(
        "first,last,expected",
        [
            (None, None, ""),
            ("First", None, "First"),
            ("First", "Last", "First Last"),
            ("First", "", "First"),
        ],
    )
    def test_combinations(self, first, last, expected):
        assert display_name(first, last) == expected


@pytest.mark.fast
class TestProjectUser:
    """Tests for the claims to NormalizedUser projection."""

    def test_basic_fields(self):
        user = project_user(_decoded())
        assert user.id == SUBJECT
        assert user.nick_name == SUBJECT
        assert user.email == "user@example.com"
        assert user.avatar_url is None
        assert user.original is None
        assert user.token is None

    def test_no_name_claims(self):
        assert project_user(_decoded()).name == ""

    def test_first_name_only(self):
        user = project_user(_decoded(user={"name": {"firstName": "First"}}))
        assert user.name == "First"

    def test_first_and_last_name(self):
        user = project_user(_decoded(user={"name": {"firstName": "First", "lastName": "Last"}}))
        assert user.name == "First Last"

    def test_email_verified_literal_true(self):
        assert project_user(_decoded()).email_verification_state == EmailVerificationState.VERIFIED

    @pytest.mark.parametrize("value", ["false", "TRUE", True, None])
    def test_email_unverified_otherwise(self, value):
        user = project_user(_decoded(email_verified=value))
        assert user.email_verification_state == EmailVerificationState.UNVERIFIED

    def test_attaches_token(self):
        user = project_user(_decoded(), BearerToken(token="abc"))
        assert user.token.token == "abc"
        assert user.token.type == "bearer"
