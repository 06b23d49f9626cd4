"""Callback context: the driver's narrow view of the host request.

The host framework owns request parsing and state storage (usually a
cookie). AppleDriver only needs the handful of operations in OAuthContext,
so any host can plug in by implementing them. CallbackContext is the
in-memory implementation used by the CLI and the tests, and a convenient
adapter for hosts that already hold the posted form and the stored state.
"""

from __future__ import annotations

import hmac
import json
import logging
import secrets
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from apple_signin.auth.schemas import AuthorizationState, EmbeddedUser

logger = logging.getLogger(__name__)


@runtime_checkable
class OAuthContext(Protocol):
    """Operations the driver needs from the host's OAuth2 machinery."""

    def input(self, name: str) -> str | None:
        """Return a posted/query field from the callback request."""
        ...

    def get_code(self) -> str | None:
        """Return the authorization code, if any."""
        ...

    def has_error(self) -> bool:
        """True when the callback carries an error or no code."""
        ...

    def state_mismatch(self) -> bool:
        """True when the callback state differs from the issued one."""
        ...

    def issue_state(self) -> str:
        """Create, remember and return a new state for a redirect."""
        ...


@runtime_checkable
class FirstAuthorizationContext(Protocol):
    """Optional extension for hosts that keep Apple's first-consent form fields."""

    def first_authorization_user(self) -> EmbeddedUser | None:
        """Return the user Apple posted alongside the code, if any."""
        ...


class CallbackContext:
    """OAuthContext over a field mapping and a previously stored state.

    Args:
        fields: Callback fields (form-post body or query string).
        stored_state: State issued at redirect time, as persisted by the host.
        code_param: Field holding the authorization code.
        error_param: Field holding the provider error.
        state_param: Field holding the echoed state.
    """

    def __init__(
        self,
        fields: Mapping[str, Any] | None = None,
        stored_state: str | None = None,
        code_param: str = "code",
        error_param: str = "error",
        state_param: str = "state",
    ) -> None:
        self.fields = dict(fields or {})
        self.stored_state = stored_state
        self.code_param = code_param
        self.error_param = error_param
        self.state_param = state_param

    def input(self, name: str) -> str | None:
        value = self.fields.get(name)
        return None if value is None else str(value)

    def get_code(self) -> str | None:
        return self.input(self.code_param) or None

    def get_error(self) -> str | None:
        return self.input(self.error_param) or None

    def has_error(self) -> bool:
        return self.get_error() is not None or self.get_code() is None

    def state_mismatch(self) -> bool:
        received = self.input(self.state_param)
        if not self.stored_state or not received:
            return True
        return not hmac.compare_digest(self.stored_state, received)

    def issue_state(self) -> str:
        self.stored_state = secrets.token_urlsafe(32)
        return self.stored_state

    def snapshot(self) -> AuthorizationState:
        """Read-only view of this callback's state, code and error."""
        return AuthorizationState(
            state=self.input(self.state_param),
            code=self.get_code(),
            error=self.get_error(),
        )

    def first_authorization_user(self) -> EmbeddedUser | None:
        """Parse the ``user`` JSON Apple posts on the first authorization only.

        Returns:
            EmbeddedUser, or None when absent or unparseable.
        """
        raw = self.fields.get("user")
        if not raw:
            return None
        try:
            data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
            return EmbeddedUser.model_validate(data)
        except ValueError as e:
            logger.warning(f"[APPLE] Ignoring malformed first-authorization user field: {e}")
            return None
