"""Sign in with Apple OAuth2 driver."""

from apple_signin.auth.client_secret import ClientSecretSigner
from apple_signin.auth.identity import IdentityTokenVerifier, project_user
from apple_signin.auth.keys import CachePolicy, SigningKeyResolver, get_key_resolver
from apple_signin.auth.schemas import (
    AccessTokenResult,
    AuthorizationState,
    DecodedIdentityToken,
    EmailVerificationState,
    NormalizedUser,
    ProviderConfig,
)
from apple_signin.context import CallbackContext, FirstAuthorizationContext, OAuthContext
from apple_signin.driver import AppleDriver, FlowState
from apple_signin.errors import (
    AccessDenied,
    AppleAuthError,
    ClientSecretConfigError,
    KeyFetchFailed,
    MissingAuthorizationCode,
    SigningKeyNotFound,
    StateMismatch,
    TokenExchangeFailed,
    TokenVerificationFailed,
)

__version__ = "1.0.0"

__all__ = [
    "AccessDenied",
    "AccessTokenResult",
    "AppleAuthError",
    "AppleDriver",
    "AuthorizationState",
    "CachePolicy",
    "CallbackContext",
    "ClientSecretConfigError",
    "ClientSecretSigner",
    "DecodedIdentityToken",
    "EmailVerificationState",
    "FirstAuthorizationContext",
    "FlowState",
    "IdentityTokenVerifier",
    "KeyFetchFailed",
    "MissingAuthorizationCode",
    "NormalizedUser",
    "OAuthContext",
    "ProviderConfig",
    "SigningKeyNotFound",
    "SigningKeyResolver",
    "StateMismatch",
    "TokenExchangeFailed",
    "TokenVerificationFailed",
    "get_key_resolver",
    "project_user",
]
