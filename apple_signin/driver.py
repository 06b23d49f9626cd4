"""Sign in with Apple OAuth2 driver.

Drives one authorization attempt:

    REDIRECTING -> AWAITING_CALLBACK -> EXCHANGING_CODE -> VERIFYING_TOKEN
        -> COMPLETED | FAILED

Request parsing and state storage come from the host through an injected
OAuthContext. Apple posts the callback (response_mode=form_post), so the
context is expected to read POST fields.

Examples:
    >>> driver = AppleDriver(CallbackContext(), config)
    >>> url = driver.redirect_url()

    >>> driver = AppleDriver(CallbackContext(form, stored_state), config)
    >>> if driver.access_denied():
    ...     ...
    >>> user = await driver.user()

Tests:
    - tests/unit/test_driver.py
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

import httpx

from apple_signin.auth.client_secret import ClientSecretSigner
from apple_signin.auth.identity import IdentityTokenVerifier, project_user
from apple_signin.auth.keys import CachePolicy, SigningKeyResolver, get_key_resolver
from apple_signin.auth.schemas import (
    AccessTokenResult,
    BearerToken,
    DecodedIdentityToken,
    EmbeddedUser,
    NormalizedUser,
    ProviderConfig,
)
from apple_signin.config import (
    APPLE_AUTHORIZE_URL,
    APPLE_TOKEN_URL,
    Settings,
    get_settings,
)
from apple_signin.context import FirstAuthorizationContext, OAuthContext
from apple_signin.errors import (
    AccessDenied,
    AppleAuthError,
    MissingAuthorizationCode,
    StateMismatch,
    TokenExchangeFailed,
)
from apple_signin.redirect import RedirectRequest

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = ["email"]

TokenRequestCallback = Callable[[dict[str, str]], None]


class FlowState(str, Enum):
    """Stages of one authorization attempt."""

    REDIRECTING = "redirecting"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING_CODE = "exchanging_code"
    VERIFYING_TOKEN = "verifying_token"
    COMPLETED = "completed"
    FAILED = "failed"


class AppleDriver:
    """OAuth2 driver for Sign in with Apple.

    Attributes:
        authorize_url: Page the user is redirected to
        access_token_url: Endpoint exchanging the code for tokens
        code_param: Callback field carrying the authorization code
        error_param: Callback field carrying the provider error
        state_param: Field used to send and receive the CSRF state
        scope_param: Query parameter carrying the scopes
        scopes_separator: Separator joining multiple scopes
    """

    authorize_url = APPLE_AUTHORIZE_URL
    access_token_url = APPLE_TOKEN_URL

    code_param = "code"
    error_param = "error"
    state_param = "state"
    scope_param = "scope"
    scopes_separator = " "

    def __init__(
        self,
        ctx: OAuthContext,
        config: ProviderConfig,
        resolver: SigningKeyResolver | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        client_secret_ttl: int = 60,
        token_leeway: int = 0,
    ) -> None:
        """Initialize driver.

        Args:
            ctx: Host request context.
            config: Immutable provider configuration.
            resolver: Signing key resolver (default: shared Apple resolver).
            http_client: Client for the token exchange (optional).
            timeout: Token exchange timeout in seconds.
            client_secret_ttl: Lifetime of each generated client secret.
            token_leeway: Clock skew tolerance for identity tokens.
        """
        self.ctx = ctx
        self.config = config
        self.timeout = timeout
        self.signer = ClientSecretSigner(config, ttl=client_secret_ttl)
        self.verifier = IdentityTokenVerifier(
            config.app_id,
            resolver if resolver is not None else get_key_resolver(timeout=timeout),
            leeway=token_leeway,
        )
        self._client = http_client
        self._owns_client = http_client is None
        self.state = FlowState.AWAITING_CALLBACK

    @classmethod
    def from_settings(
        cls,
        ctx: OAuthContext,
        settings: Settings | None = None,
        **kwargs: Any,
    ) -> "AppleDriver":
        """Build a driver from environment settings.

        Raises:
            ValueError: If required credentials are missing.
        """
        settings = settings or get_settings()
        policy = CachePolicy(
            max_entries=settings.APPLE_JWKS_CACHE_MAX_ENTRIES,
            max_age=settings.APPLE_JWKS_CACHE_MAX_AGE,
            rate_limit=settings.APPLE_JWKS_RATE_LIMIT,
        )
        kwargs.setdefault(
            "resolver",
            get_key_resolver(policy=policy, timeout=settings.APPLE_HTTP_TIMEOUT),
        )
        kwargs.setdefault("timeout", settings.APPLE_HTTP_TIMEOUT)
        kwargs.setdefault("client_secret_ttl", settings.APPLE_CLIENT_SECRET_TTL)
        kwargs.setdefault("token_leeway", settings.APPLE_TOKEN_LEEWAY)
        return cls(ctx, settings.get_provider_config(), **kwargs)

    @property
    def client(self) -> httpx.AsyncClient:
        """Get httpx async client (lazy initialization)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this driver created it."""
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "AppleDriver":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _transition(self, state: FlowState) -> None:
        logger.debug(f"[APPLE] Flow {self.state.value} -> {state.value}")
        self.state = state

    # ------------------------------------------------------------------
    # Redirect
    # ------------------------------------------------------------------

    def configure_redirect_request(self, request: RedirectRequest) -> None:
        """Set Apple's scopes and fixed parameters on the redirect request."""
        request.scopes(self.config.scopes or DEFAULT_SCOPES)

        request.param("client_id", self.config.app_id)
        request.param("response_type", "code")
        request.param("response_mode", "form_post")
        request.param("grant_type", "authorization_code")

    def redirect_request(self) -> RedirectRequest:
        """Build the redirect request with a freshly issued state."""
        request = RedirectRequest(
            self.authorize_url,
            scope_param=self.scope_param,
            scopes_separator=self.scopes_separator,
        )
        self.configure_redirect_request(request)
        request.param(self.state_param, self.ctx.issue_state())
        request.param("redirect_uri", self.config.callback_url)
        return request

    def redirect_url(self, callback: Callable[[RedirectRequest], None] | None = None) -> str:
        """Return the URL to send the user to.

        Args:
            callback: Hook to adjust the request before the URL is built.
        """
        self._transition(FlowState.REDIRECTING)
        request = self.redirect_request()
        if callback is not None:
            callback(request)
        url = request.url()
        self._transition(FlowState.AWAITING_CALLBACK)
        return url

    # ------------------------------------------------------------------
    # Callback checks
    # ------------------------------------------------------------------

    def access_denied(self) -> bool:
        """True when the user declined consent on Apple's page."""
        return self.ctx.input(self.error_param) == "user_denied"

    def ensure_not_denied(self) -> None:
        """Raise AccessDenied when the user declined consent."""
        if self.access_denied():
            raise AccessDenied()

    def has_error(self) -> bool:
        return self.ctx.has_error()

    def state_mismatch(self) -> bool:
        return self.ctx.state_mismatch()

    def get_code(self) -> str | None:
        return self.ctx.get_code()

    # ------------------------------------------------------------------
    # Token exchange
    # ------------------------------------------------------------------

    async def access_token(self, callback: TokenRequestCallback | None = None) -> AccessTokenResult:
        """Exchange the callback's authorization code for tokens.

        Args:
            callback: Hook receiving the form fields before they are sent.

        Returns:
            AccessTokenResult with the identity token.

        Raises:
            AccessDenied: If the user declined consent.
            MissingAuthorizationCode: If the callback has an error or no code.
            StateMismatch: If the CSRF state does not match.
            TokenExchangeFailed: If Apple rejects the exchange.
        """
        try:
            if self.has_error():
                if self.access_denied():
                    raise AccessDenied()
                raise MissingAuthorizationCode(self.code_param)

            if self.state_mismatch():
                raise StateMismatch()

            self._transition(FlowState.EXCHANGING_CODE)
            return await self._exchange_code(callback)
        except AppleAuthError as e:
            logger.warning(f"[APPLE] Access token request failed: {e}")
            self._transition(FlowState.FAILED)
            raise

    async def _exchange_code(self, callback: TokenRequestCallback | None) -> AccessTokenResult:
        fields = {
            "grant_type": "authorization_code",
            "redirect_uri": self.config.callback_url,
            "client_id": self.config.app_id,
            "client_secret": self.signer.generate_client_secret(),
            self.code_param: self.get_code() or "",
        }
        if callback is not None:
            callback(fields)

        try:
            response = await self.client.post(
                self.access_token_url,
                data=fields,
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise TokenExchangeFailed(f"Token endpoint unreachable: {e!r}") from e

        if not response.is_success:
            self._handle_error(response)

        try:
            data = response.json()
        except ValueError as e:
            raise TokenExchangeFailed("Token endpoint returned invalid JSON") from e

        if not isinstance(data, dict) or not data.get("id_token"):
            raise TokenExchangeFailed("Token response has no id_token")

        try:
            expires_in = int(data.get("expires_in") or 0)
            result = AccessTokenResult(
                token=data.get("access_token", ""),
                type=data.get("token_type", "bearer"),
                id_token=data["id_token"],
                refresh_token=data.get("refresh_token"),
                expires_in=expires_in,
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            )
        except (ValueError, TypeError, OverflowError) as e:
            raise TokenExchangeFailed("Token response is malformed") from e

        logger.info("[APPLE] Authorization code exchanged")
        return result

    def _handle_error(self, response: httpx.Response) -> None:
        """Convert a non-2xx token response to TokenExchangeFailed."""
        try:
            body = response.json()
        except ValueError:
            body = None
        error = body.get("error") if isinstance(body, dict) else None

        raise TokenExchangeFailed(
            f"Token exchange rejected: {error or response.reason_phrase}",
            status_code=response.status_code,
            error=error,
        )

    # ------------------------------------------------------------------
    # User
    # ------------------------------------------------------------------

    async def _verify(self, identity_token: str) -> DecodedIdentityToken:
        self._transition(FlowState.VERIFYING_TOKEN)
        try:
            decoded = await self.verifier.verify(identity_token)
        except AppleAuthError:
            self._transition(FlowState.FAILED)
            raise
        self._transition(FlowState.COMPLETED)
        return decoded

    def _with_first_authorization_name(self, decoded: DecodedIdentityToken) -> DecodedIdentityToken:
        # Apple posts the name as a separate form field, only on first consent.
        if decoded.user is not None and decoded.user.name is not None:
            return decoded
        if not isinstance(self.ctx, FirstAuthorizationContext):
            return decoded
        posted = self.ctx.first_authorization_user()
        if posted is None or posted.name is None:
            return decoded
        user = EmbeddedUser(email=decoded.user.email if decoded.user else None, name=posted.name)
        return decoded.model_copy(update={"user": user})

    async def user(self, callback: TokenRequestCallback | None = None) -> NormalizedUser:
        """Exchange the code and return the verified user.

        Raises:
            AppleAuthError: Any failure of the exchange or verification.
        """
        token = await self.access_token(callback)
        decoded = await self._verify(token.id_token)
        return project_user(self._with_first_authorization_name(decoded), token)

    async def user_from_token(self, token: str) -> NormalizedUser:
        """Verify an identity token the caller already holds.

        Raises:
            TokenVerificationFailed: If the token does not verify.
        """
        decoded = await self._verify(token)
        return project_user(decoded, BearerToken(token=token))
