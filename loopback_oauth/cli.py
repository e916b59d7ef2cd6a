"""Command-line interface for the loopback login flow."""

from __future__ import annotations

import argparse
import asyncio
import sys

from pathlib import Path
from typing import TYPE_CHECKING, Any

from .events import EVENT_DEBUG, EVENT_DONE, EventEmitter
from .exceptions import LoopbackOAuthError
from .log import enable_debug, set_level


if TYPE_CHECKING:
    from .config import OAuthSettings


def main() -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="loopback-oauth",
        description="Browser login with OAuth2 PKCE over a loopback redirect",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Print every flow step",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # login command
    login_parser = subparsers.add_parser(
        "login",
        help="Log in through the system browser",
    )
    login_parser.add_argument(
        "--no-browser",
        action="store_true",
        help="Print the login URL instead of opening the browser",
    )
    login_parser.add_argument(
        "--timeout",
        type=float,
        help="Seconds to wait for the browser redirect",
    )

    # refresh command
    subparsers.add_parser(
        "refresh",
        help="Refresh the stored tokens without the browser",
    )

    # logout command
    subparsers.add_parser(
        "logout",
        help="Delete the stored tokens",
    )

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Show or export configuration",
    )
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )
    config_group.add_argument(
        "--env",
        action="store_true",
        help="Export configuration as environment variables",
    )
    config_parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Output file path (default: stdout)",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    handlers = {
        "login": handle_login,
        "refresh": handle_refresh,
        "logout": handle_logout,
        "config": handle_config,
    }
    try:
        return handlers[args.command](args)
    except LoopbackOAuthError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def _load(args: argparse.Namespace, **overrides: Any) -> OAuthSettings:
    from .config import load_settings

    settings = load_settings(**overrides)
    set_level(settings.log_level)
    if args.debug:
        enable_debug()
    return settings


def _print_event(prefix: str) -> Any:
    def _handler(payload: Any) -> None:
        print(f"{prefix}{payload}", file=sys.stderr)

    return _handler


def handle_login(args: argparse.Namespace) -> int:
    """Handle the login command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code, 0 once the login completed.
    """
    from .auth import LoginFlow

    overrides: dict[str, Any] = {}
    if args.timeout is not None:
        overrides["auth_timeout_seconds"] = args.timeout
    settings = _load(args, **overrides)

    emitter = EventEmitter()
    if args.debug:
        emitter.on(EVENT_DEBUG, _print_event("debug: "))

    def _on_done(payload: Any) -> None:
        print(f"Logged in as {payload.username}")

    emitter.on(EVENT_DONE, _on_done)

    open_url = _print_login_url if args.no_browser else None

    async def _run() -> int:
        async with LoginFlow(settings, emitter=emitter, open_url=open_url) as flow:
            try:
                await flow.login()
            finally:
                await emitter.drain()
        return 0

    try:
        return asyncio.run(_run())
    except KeyboardInterrupt:
        print("Login cancelled", file=sys.stderr)
        return 1


def _print_login_url(url: str) -> bool:
    print(f"Open this URL to log in:\n\n  {url}\n")
    return True


def handle_refresh(args: argparse.Namespace) -> int:
    """Handle the refresh command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    from .auth import LoginFlow

    settings = _load(args)

    async def _run() -> int:
        async with LoginFlow(settings) as flow:
            tokens = await flow.refresh()
        print(f"Tokens refreshed (scope: {tokens.scope}, expires in {tokens.expires_in}s)")
        return 0

    return asyncio.run(_run())


def handle_logout(args: argparse.Namespace) -> int:
    """Handle the logout command."""
    from .auth import LoginFlow

    settings = _load(args)

    async def _run() -> int:
        async with LoginFlow(settings) as flow:
            await flow.logout()
        print("Stored tokens deleted")
        return 0

    return asyncio.run(_run())


def handle_config(args: argparse.Namespace) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    settings = _load(args)

    output = settings.to_env() if args.env else settings.show()

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Configuration written to {args.output}")
    else:
        print(output)

    return 0
