"""Error taxonomy for the Sign in with Apple flow.

Every failure of a login attempt is raised as a distinct subclass of
AppleAuthError. None of them are retried: the host is expected to reject the
attempt and, if it wants, restart the redirect flow with a new state.

Examples:
    >>> from apple_signin.errors import StateMismatch
    >>> try:
    ...     raise StateMismatch()
    ... except AppleAuthError as e:
    ...     print(e.code)
    E_OAUTH_STATE_MISMATCH

Tests:
    - tests/unit/test_errors.py
"""

__all__ = [
    "AppleAuthError",
    "AccessDenied",
    "MissingAuthorizationCode",
    "StateMismatch",
    "SigningKeyNotFound",
    "KeyFetchFailed",
    "TokenVerificationFailed",
    "TokenExchangeFailed",
    "ClientSecretConfigError",
]


class AppleAuthError(Exception):
    """Base exception for Sign in with Apple errors.

    Attributes:
        message: Error message
        code: Stable machine-readable error code
        status_code: HTTP status code the host should answer with
    """

    code = "E_APPLE_AUTH"
    status_code: int | None = None

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        """Initialize auth error.

        Args:
            message: Error message.
            code: Override for the class error code (optional).
            status_code: Override for the class HTTP status (optional).
        """
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def __str__(self) -> str:
        """String representation of the error."""
        parts = [f"[{self.code}]", self.message]
        if self.status_code:
            parts.insert(1, f"({self.status_code})")
        return " ".join(parts)


class AccessDenied(AppleAuthError):
    """The user declined consent on Apple's page (error=user_denied)."""

    code = "E_OAUTH_ACCESS_DENIED"
    status_code = 403

    def __init__(self) -> None:
        super().__init__("Access was denied by the user")


class MissingAuthorizationCode(AppleAuthError):
    """The callback carries an error or no authorization code at all."""

    code = "E_OAUTH_MISSING_CODE"
    status_code = 400

    def __init__(self, param_name: str = "code") -> None:
        """Initialize missing code error.

        Args:
            param_name: Name of the field the code was expected in.
        """
        super().__init__(f'Invalid oauth request. Missing "{param_name}" param')
        self.param_name = param_name


class StateMismatch(AppleAuthError):
    """The CSRF state is absent or differs from the one issued at redirect."""

    code = "E_OAUTH_STATE_MISMATCH"
    status_code = 400

    def __init__(self) -> None:
        super().__init__("Unable to verify re-redirect state")


class SigningKeyNotFound(AppleAuthError):
    """Apple's key set has no key with the requested key id."""

    code = "E_APPLE_SIGNING_KEY_NOT_FOUND"
    status_code = 401

    def __init__(self, kid: str | None) -> None:
        """Initialize missing key error.

        Args:
            kid: The key id that could not be resolved.
        """
        super().__init__(f'Unable to find a signing key that matches "{kid}"')
        self.kid = kid


class KeyFetchFailed(AppleAuthError):
    """Apple's key set could not be fetched (network, HTTP or rate limit)."""

    code = "E_APPLE_KEY_FETCH_FAILED"
    status_code = 503


class TokenVerificationFailed(AppleAuthError):
    """The identity token failed decoding, signature or claim checks.

    The reason is logged but not exposed to the caller.
    """

    code = "E_APPLE_TOKEN_VERIFICATION_FAILED"
    status_code = 401

    def __init__(self) -> None:
        super().__init__("Invalid Apple identity token")


class TokenExchangeFailed(AppleAuthError):
    """The token endpoint rejected the code exchange or was unreachable.

    Attributes:
        error: Apple's ``error`` value from the response body, if any
    """

    code = "E_APPLE_TOKEN_EXCHANGE_FAILED"
    status_code = 502

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error: str | None = None,
    ) -> None:
        """Initialize exchange error.

        Args:
            message: Error message.
            status_code: HTTP status returned by Apple (optional).
            error: Apple's error value, e.g. ``invalid_grant`` (optional).
        """
        super().__init__(message, status_code=status_code)
        self.error = error


class ClientSecretConfigError(AppleAuthError):
    """The configured private key cannot sign a client secret."""

    code = "E_APPLE_CLIENT_SECRET_CONFIG"
    status_code = 500
