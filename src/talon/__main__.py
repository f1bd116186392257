"""CLI entry point for talon."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from talon.ai.router import build_routes
from talon.app import TalonApp
from talon.config import AppConfig, load_config
from talon.errors import ConfigError
from talon.log import setup_logging
from talon.messenger.base import MessengerAdapter
from talon.messenger.console import ConsoleAdapter


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="talon",
        description="Personal conversational-agent gateway",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("start", "Start the agent on the console channel"),
        ("config-check", "Validate configuration"),
        ("model-info", "Show the provider route table"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
        sub.add_argument("-e", "--env", default=".env", help="Path to .env file")

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    match args.command:
        case "config-check":
            _check_config(args.config, args.env)
        case "model-info":
            _model_info(args.config, args.env)
        case "start":
            _run(args.config, args.env)


def _load(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and fill in your provider keys.", file=sys.stderr)
        sys.exit(1)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Providers configured: {len(config.providers)}")
    for provider in config.providers:
        status = "ok" if provider.has_credentials else "missing api key"
        models = ", ".join(m.name for m in provider.models) or "(no models)"
        print(f"    - {provider.id} ({provider.kind}) [{status}]: {models}")
    print(f"  Storage: {config.storage.backend} {config.storage.db_path}")
    print(f"  Tools: {', '.join(config.agent.tools) or '(none)'}")


def _model_info(config_path: str, env_path: str) -> None:
    """Show the route table in fallback order."""
    config = _load(config_path, env_path)
    setup_logging("WARNING", config.log_format)
    routes = build_routes(config)

    print("Provider Routes")
    print("=" * 50)
    if not routes:
        print("  (no usable routes; check provider api keys)")
    for route in routes:
        print(f"\n  {route.priority}. {route.key}")
        print(f"    Cost rank : {route.cost_rank}")
        print(f"    Tools     : {'yes' if route.supports_tools else 'no'}")
        print(f"    Context   : {route.context_window} tokens")
        print(f"    Timeout   : {route.timeout}s")
    print()


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the application."""
    config = _load(config_path, env_path)
    setup_logging(config.log_level, config.log_format)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: _signal_handler())

        adapters: list[MessengerAdapter] = []
        console: ConsoleAdapter | None = None
        if config.channels.console.enabled:
            console = ConsoleAdapter(sender_id=config.channels.console.sender_id)
            adapters.append(console)

        app = TalonApp(config, adapters=adapters)
        await app.start()

        waiters = {asyncio.create_task(stop_event.wait())}
        if console is not None:
            waiters.add(asyncio.create_task(console.closed.wait()))
        done, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for t in pending:
            t.cancel()

        await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
