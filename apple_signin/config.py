"""Driver configuration with Pydantic Settings.

Settings are loaded from environment variables and .env files. The driver
itself only consumes an immutable ProviderConfig, which is built from the
settings once and handed to AppleDriver at construction.

Examples:
    >>> from apple_signin.config import get_settings
    >>> settings = get_settings()
    >>> settings.APPLE_SCOPES
    []

    >>> settings.get_provider_config()
    ProviderConfig(app_id='com.example.web', team_id='TEAM123456', ...)

Tests:
    - tests/unit/test_config.py::TestSettings
    - tests/unit/test_config.py::TestProviderConfigBuild
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from apple_signin.auth.schemas import ProviderConfig

APPLE_AUTHORIZE_URL = "https://appleid.apple.com/auth/authorize"
APPLE_TOKEN_URL = "https://appleid.apple.com/auth/token"
APPLE_JWKS_URL = "https://appleid.apple.com/auth/keys"
APPLE_ISSUER = "https://appleid.apple.com"

# Apple rejects client secrets that live longer than it allows; keep them short.
MAX_CLIENT_SECRET_TTL = 300


class Settings(BaseSettings):
    """Sign in with Apple settings.

    Attributes:
        APPLE_APP_ID: Services ID / bundle id used as OAuth client_id
        APPLE_TEAM_ID: Team ID of the Apple Developer account
        APPLE_CLIENT_ID: Key ID of the Sign in with Apple private key
        APPLE_CLIENT_SECRET: PEM private key text
        APPLE_CLIENT_SECRET_PATH: Path to the .p8 key, used when the text is unset
        APPLE_CALLBACK_URL: Redirect URI registered with Apple
        APPLE_SCOPES: Requested scopes (defaults to ["email"] at redirect time)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Credentials
    APPLE_APP_ID: str | None = Field(
        default=None,
        description="Services ID used as the OAuth client_id",
    )
    APPLE_TEAM_ID: str | None = Field(
        default=None,
        description="Apple Developer Team ID",
    )
    APPLE_CLIENT_ID: str | None = Field(
        default=None,
        description="Key ID of the private signing key",
    )
    APPLE_CLIENT_SECRET: str | None = Field(
        default=None,
        description="PEM private key used to sign client secrets",
    )
    APPLE_CLIENT_SECRET_PATH: str | None = Field(
        default=None,
        description="Path to the .p8 private key file",
    )
    APPLE_CALLBACK_URL: str | None = Field(
        default=None,
        description="Redirect URI registered with Apple",
    )
    APPLE_SCOPES: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Requested scopes, space or comma separated",
    )

    # Network
    APPLE_HTTP_TIMEOUT: float = Field(
        default=10.0,
        gt=0,
        description="Timeout in seconds for key fetch and token exchange",
    )

    # Tokens
    APPLE_CLIENT_SECRET_TTL: int = Field(
        default=60,
        ge=1,
        le=MAX_CLIENT_SECRET_TTL,
        description="Lifetime of a generated client secret in seconds",
    )
    APPLE_TOKEN_LEEWAY: int = Field(
        default=0,
        ge=0,
        description="Clock skew tolerance for identity token expiry",
    )

    # JWKS cache
    APPLE_JWKS_CACHE_MAX_ENTRIES: int = Field(
        default=100,
        ge=1,
        description="Maximum number of cached signing keys",
    )
    APPLE_JWKS_CACHE_MAX_AGE: int = Field(
        default=60 * 60 * 24,
        ge=0,
        description="Seconds a cached signing key stays fresh",
    )
    APPLE_JWKS_RATE_LIMIT: int = Field(
        default=10,
        ge=0,
        description="Maximum key set fetches per minute (0 disables the limit)",
    )

    # Application Settings
    DEBUG: bool = Field(
        default=False,
        description="Enable debug logging",
    )

    @field_validator("APPLE_SCOPES", mode="before")
    @classmethod
    def split_scopes(cls, v: Any) -> Any:
        """Accept scopes as a list or a space/comma separated string."""
        if v is None:
            return []
        if isinstance(v, str):
            return [s for s in v.replace(",", " ").split() if s]
        return v

    @field_validator("APPLE_CALLBACK_URL")
    @classmethod
    def validate_callback_url(cls, v: str | None) -> str | None:
        """Validate callback URL scheme."""
        if v and not v.startswith(("https://", "http://")):
            raise ValueError("APPLE_CALLBACK_URL must be an http(s) URL")
        return v

    @model_validator(mode="after")
    def load_private_key_file(self) -> "Settings":
        """Read the private key from APPLE_CLIENT_SECRET_PATH when no text is set."""
        if not self.APPLE_CLIENT_SECRET and self.APPLE_CLIENT_SECRET_PATH:
            path = Path(self.APPLE_CLIENT_SECRET_PATH)
            if not path.is_file():
                raise ValueError(f"APPLE_CLIENT_SECRET_PATH does not exist: {path}")
            self.APPLE_CLIENT_SECRET = path.read_text(encoding="utf-8")
        return self

    @property
    def missing_credentials(self) -> list[str]:
        """Names of required settings that are not configured."""
        required = {
            "APPLE_APP_ID": self.APPLE_APP_ID,
            "APPLE_TEAM_ID": self.APPLE_TEAM_ID,
            "APPLE_CLIENT_ID": self.APPLE_CLIENT_ID,
            "APPLE_CLIENT_SECRET": self.APPLE_CLIENT_SECRET,
            "APPLE_CALLBACK_URL": self.APPLE_CALLBACK_URL,
        }
        return [name for name, value in required.items() if not value]

    def get_provider_config(self) -> ProviderConfig:
        """Build the immutable driver configuration.

        Returns:
            ProviderConfig: Credentials and scopes for AppleDriver.

        Raises:
            ValueError: If any required credential is not configured.
        """
        missing = self.missing_credentials
        if missing:
            raise ValueError(f"Sign in with Apple not configured: {', '.join(missing)}")

        return ProviderConfig(
            app_id=self.APPLE_APP_ID,
            team_id=self.APPLE_TEAM_ID,
            client_id=self.APPLE_CLIENT_ID,
            client_secret=self.APPLE_CLIENT_SECRET,
            callback_url=self.APPLE_CALLBACK_URL,
            scopes=self.APPLE_SCOPES or None,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: The driver settings.
    """
    return Settings()
