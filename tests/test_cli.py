"""Tests for the command-line interface."""

from __future__ import annotations

import contextlib
import sys

from io import StringIO
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from loopback_oauth.auth.flow import LoginFlow
from loopback_oauth.cli import main
from loopback_oauth.exceptions import AuthFlowTimeout
from loopback_oauth.types import AuthFlowResult, AuthFlowState


def _run(*argv: str) -> tuple[int, str, str]:
    with (
        patch.object(sys, "argv", ["loopback-oauth", *argv]),
        patch("sys.stdout", new_callable=StringIO) as mock_stdout,
        patch("sys.stderr", new_callable=StringIO) as mock_stderr,
    ):
        code = main()
    return code, mock_stdout.getvalue(), mock_stderr.getvalue()


@pytest.fixture
def memory_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the CLI away from the OS keyring."""
    monkeypatch.setenv("LOOPBACK_OAUTH_TOKEN_STORE", "memory")


class TestMainEntryPoint:
    """Tests for the CLI entry point."""

    def test_no_args_prints_help_text(self) -> None:
        """Running with no args prints help listing the subcommands."""
        code, out, _ = _run()

        assert code == 0
        assert "usage:" in out.lower()
        for command in ("login", "refresh", "logout", "config"):
            assert command in out

    def test_help_flag_shows_usage(self) -> None:
        """--help prints usage."""
        with (
            patch.object(sys, "argv", ["loopback-oauth", "--help"]),
            patch("sys.stdout", new_callable=StringIO) as mock_stdout,
            contextlib.suppress(SystemExit),
        ):
            main()

        assert "loopback-oauth" in mock_stdout.getvalue()

    def test_invalid_configuration(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A bad setting is reported with exit code 1."""
        monkeypatch.setenv("OAUTH_PORT", "70000")

        code, _, err = _run("config")

        assert code == 1
        assert "Invalid configuration" in err


class TestConfigCommand:
    """Tests for the config command."""

    def test_show(self) -> None:
        """config --show prints the settings table."""
        code, out, _ = _run("config", "--show")

        assert code == 0
        assert "loopback-oauth Configuration" in out
        assert "http://127.0.0.1:53682/callback" in out

    def test_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """config --env exports shell variables."""
        monkeypatch.setenv("OAUTH_PORT", "40000")

        code, out, _ = _run("config", "--env")

        assert code == 0
        assert 'export OAUTH_PORT="40000"' in out

    def test_output_file(self, tmp_path: Path) -> None:
        """config --output writes to a file."""
        target = tmp_path / "oauth.env"

        code, out, _ = _run("config", "--env", "--output", str(target))

        assert code == 0
        assert "Configuration written to" in out
        assert "export DISCORD_CLIENT_ID=" in target.read_text(encoding="utf-8")


@pytest.mark.usefixtures("memory_backend")
class TestTokenCommands:
    """Tests for refresh and logout."""

    def test_refresh_without_tokens(self) -> None:
        """refresh with nothing stored fails."""
        code, _, err = _run("refresh")

        assert code == 1
        assert "No stored tokens" in err

    def test_logout(self) -> None:
        """logout succeeds even when nothing is stored."""
        code, out, _ = _run("logout")

        assert code == 0
        assert "Stored tokens deleted" in out


@pytest.mark.usefixtures("memory_backend")
class TestLoginCommand:
    """Tests for the login command with the flow stubbed out."""

    def test_success(self) -> None:
        """A completed login exits 0."""
        result = AuthFlowResult(success=True, state=AuthFlowState.COMPLETED)
        with patch.object(LoginFlow, "login", AsyncMock(return_value=result)) as login:
            code, _, _ = _run("login", "--no-browser")

        assert code == 0
        login.assert_awaited_once()

    def test_timeout_option(self) -> None:
        """--timeout overrides the configured wait and failures exit 1."""
        seen: list[float] = []

        async def fake_login(self: LoginFlow) -> AuthFlowResult:
            seen.append(self.settings.auth_timeout_seconds)
            raise AuthFlowTimeout("authentication timed out", timeout=2.5)

        with patch.object(LoginFlow, "login", fake_login):
            code, _, err = _run("login", "--timeout", "2.5")

        assert code == 1
        assert seen == [2.5]
        assert "authentication timed out" in err

    def test_no_browser_prints_url(self) -> None:
        """--no-browser prints the authorize URL instead of opening it."""

        async def fake_login(self: LoginFlow) -> AuthFlowResult:
            self.open_url("https://auth.test/authorize?state=x")
            return AuthFlowResult(success=True, state=AuthFlowState.COMPLETED)

        with patch.object(LoginFlow, "login", fake_login):
            code, out, _ = _run("login", "--no-browser")

        assert code == 0
        assert "https://auth.test/authorize?state=x" in out
