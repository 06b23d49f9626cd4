"""Unit tests for the command-line interface.

Run with:
    pytest tests/unit/test_cli.py -v
"""

import logging
from unittest.mock import AsyncMock, patch

import jwt
import pytest
from click.testing import CliRunner

from apple_signin.auth.schemas import NormalizedUser
from apple_signin.cli import main
from apple_signin.errors import TokenVerificationFailed
from tests.utils.apple_helpers import APP_ID, CALLBACK_URL, KEY_ID, SUBJECT, TEAM_ID


@pytest.fixture
def env(ec_private_pem, monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    values = {
        "APPLE_APP_ID": APP_ID,
        "APPLE_TEAM_ID": TEAM_ID,
        "APPLE_CLIENT_ID": KEY_ID,
        "APPLE_CLIENT_SECRET": ec_private_pem,
        "APPLE_CALLBACK_URL": CALLBACK_URL,
    }
    for name, value in values.items():
        monkeypatch.setenv(name, value)
    monkeypatch.delenv("DEBUG", raising=False)
    return values


@pytest.mark.fast
class TestCli:
    def test_authorize_url(self, env):
        result = CliRunner().invoke(main, ["authorize-url", "--state", "fixed-state"])
        assert result.exit_code == 0
        assert "appleid.apple.com" in result.output
        assert "fixed-state" in result.output

    def test_client_secret(self, env, ec_private_key):
        result = CliRunner().invoke(main, ["client-secret"])
        assert result.exit_code == 0
        claims = jwt.decode(
            result.output.strip(),
            ec_private_key.public_key(),
            algorithms=["ES256"],
            audience="https://appleid.apple.com",
        )
        assert claims["iss"] == TEAM_ID

    def test_missing_configuration(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        for name in ("APPLE_APP_ID", "APPLE_TEAM_ID", "APPLE_CLIENT_ID", "APPLE_CLIENT_SECRET",
                     "APPLE_CLIENT_SECRET_PATH", "APPLE_CALLBACK_URL"):
            monkeypatch.delenv(name, raising=False)
        result = CliRunner().invoke(main, ["client-secret"])
        assert result.exit_code == 1
        assert "not configured" in result.output

    def test_verify_success(self, env):
        user = NormalizedUser(id=SUBJECT, nick_name=SUBJECT, email="user@example.com")
        with patch("apple_signin.cli.AppleDriver.user_from_token", new=AsyncMock(return_value=user)):
            result = CliRunner().invoke(main, ["verify", "token"])
        assert result.exit_code == 0
        assert SUBJECT in result.output

    def test_verify_failure(self, env):
        with patch(
            "apple_signin.cli.AppleDriver.user_from_token",
            new=AsyncMock(side_effect=TokenVerificationFailed()),
        ):
            result = CliRunner().invoke(main, ["verify", "token"])
        assert result.exit_code == 1
        assert "Invalid Apple identity token" in result.output

    @pytest.mark.parametrize(
        "args,debug_env,level",
        [
            ([], None, logging.INFO),
            (["--verbose"], None, logging.DEBUG),
            ([], "true", logging.DEBUG),
        ],
    )
    def test_log_level(self, env, monkeypatch, args, debug_env, level):
        if debug_env is not None:
            monkeypatch.setenv("DEBUG", debug_env)
        with patch("apple_signin.cli.logging.basicConfig") as basic_config:
            result = CliRunner().invoke(main, [*args, "authorize-url"])
        assert result.exit_code == 0
        assert basic_config.call_args.kwargs["level"] == level

    def test_invalid_configuration(self, env, monkeypatch):
        monkeypatch.setenv("APPLE_CALLBACK_URL", "ftp://example.com/cb")
        result = CliRunner().invoke(main, ["authorize-url"])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
