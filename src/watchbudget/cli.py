"""Command-line interface for watchbudget.

Provides the main entry point for running the session API, preparing
the database, creating profiles, and driving a watch session from the
terminal for manual testing.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="watchbudget",
        description="Watch session lifecycle and daily time-budget enforcement",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/watchbudget.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("serve", help="Start the session API server")
    subparsers.add_parser("init-db", help="Create database tables")

    profile_parser = subparsers.add_parser("add-profile", help="Create a viewing profile")
    profile_parser.add_argument("--owner", type=str, required=True, help="Owning account id")
    profile_parser.add_argument("--name", type=str, required=True, help="Profile display name")
    profile_parser.add_argument(
        "--limit", type=int, default=None,
        help="Daily limit in minutes (default: budget.default_daily_limit_minutes)",
    )
    profile_parser.add_argument(
        "--unlimited", action="store_true",
        help="Create the profile without a daily limit",
    )
    profile_parser.add_argument(
        "--timezone", type=str, default=None,
        help="IANA time zone for the daily boundary (default: budget.default_timezone)",
    )

    watch_parser = subparsers.add_parser("watch", help="Run a watch session against a server")
    watch_parser.add_argument("--profile", type=str, default=None, help="Profile id")
    watch_parser.add_argument("--video", type=str, required=True, help="Video id")
    watch_parser.add_argument("--chip", type=str, default=None, help="NFC chip id (kiosk start)")

    return parser.parse_args(argv)


async def _watch(settings, args) -> None:
    """Run one session until it reaches a terminal state."""
    from watchbudget.client import BackoffPolicy, SessionController

    def _print_state(state) -> None:
        print(f"State: {state.value}")

    def _print_tick(result: dict) -> None:
        print(
            f"  elapsed={result.get('elapsed_seconds')}s "
            f"remaining={result.get('remaining_minutes')} min"
        )

    controller = SessionController(
        args.profile,
        args.video,
        args.chip,
        base_url=settings.client.base_url,
        api_prefix=settings.server.api_prefix,
        policy=BackoffPolicy.from_config(settings.heartbeat),
        request_timeout=settings.heartbeat.request_timeout,
        on_state_change=_print_state,
        on_tick=_print_tick,
    )
    async with controller:
        await controller.activate()
        final = await controller.wait_terminal()

    print(f"\nSession: {controller.session_id}")
    print(f"Final state: {final.value}")
    if controller.error:
        print(f"Message: {controller.error}")


def _add_profile(settings, args) -> None:
    from watchbudget.storage import create_db_engine, init_db, make_session_factory
    from watchbudget.storage.catalog import create_profile

    limit = None
    if not args.unlimited:
        limit = args.limit if args.limit is not None else settings.budget.default_daily_limit_minutes

    engine = create_db_engine(settings.database)
    try:
        init_db(engine)
        profile = create_profile(
            make_session_factory(engine),
            owner_id=args.owner,
            name=args.name,
            daily_limit_minutes=limit,
            timezone=args.timezone or settings.budget.default_timezone,
        )
    finally:
        engine.dispose()

    print(f"Created profile {profile.id} ({profile.name})")
    print(f"  Daily limit: {profile.daily_limit_minutes if profile.daily_limit_minutes is not None else 'unlimited'}")
    print(f"  Time zone:   {profile.timezone}")


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the watchbudget CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from watchbudget.config.settings import load_settings
    from watchbudget.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "serve":
        logger.info("Starting session API on %s:%d", settings.server.host, settings.server.port)
        from watchbudget.server.app import create_app
        import uvicorn
        app = create_app(settings)
        uvicorn.run(
            app,
            host=settings.server.host,
            port=settings.server.port,
        )

    elif args.command == "init-db":
        from watchbudget.storage import create_db_engine, init_db
        engine = create_db_engine(settings.database)
        try:
            init_db(engine)
        finally:
            engine.dispose()
        print(f"Database ready at {engine.url.render_as_string(hide_password=True)}")

    elif args.command == "add-profile":
        _add_profile(settings, args)

    elif args.command == "watch":
        logger.info("Starting watch session for video %s", args.video)
        try:
            asyncio.run(_watch(settings, args))
        except KeyboardInterrupt:
            # The controller's context exit already tore the session down.
            print("\nInterrupted")


if __name__ == "__main__":
    main()
