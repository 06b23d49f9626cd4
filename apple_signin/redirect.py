"""Authorization redirect request builder."""

from __future__ import annotations

from urllib.parse import urlencode


class RedirectRequest:
    """Collects scopes and query parameters for the authorize URL.

    Examples:
        >>> request = RedirectRequest("https://appleid.apple.com/auth/authorize")
        >>> request = request.scopes(["email", "name"]).param("response_type", "code")
        >>> request.url()
        'https://appleid.apple.com/auth/authorize?response_type=code&scope=email+name'
    """

    def __init__(
        self,
        base_url: str,
        scope_param: str = "scope",
        scopes_separator: str = " ",
    ) -> None:
        self.base_url = base_url
        self.scope_param = scope_param
        self.scopes_separator = scopes_separator
        self._scopes: list[str] = []
        self._params: dict[str, str] = {}

    def scopes(self, scopes: list[str]) -> "RedirectRequest":
        """Replace the requested scopes."""
        self._scopes = list(scopes)
        return self

    def param(self, name: str, value: str) -> "RedirectRequest":
        """Set a query parameter."""
        self._params[name] = value
        return self

    @property
    def params(self) -> dict[str, str]:
        """Query parameters including the joined scope."""
        params = dict(self._params)
        if self._scopes:
            params[self.scope_param] = self.scopes_separator.join(self._scopes)
        return params

    def url(self) -> str:
        """Build the full redirect URL."""
        return f"{self.base_url}?{urlencode(self.params)}"
