"""
Command-line interface for the counter client.

This module provides the main CLI entry point with commands for:
- run: Connect to the broker and print the client state as it changes
- reset: Clear all stored data and generate a new client ID (offline)
- status: Show the stored client ID and counter
- config: Configuration management
"""

import argparse
import asyncio
import os
import signal
import sys
from pathlib import Path
from typing import Callable, Mapping, Optional

from dotenv import load_dotenv

from . import __version__
from .audit_logger import AuditLogger
from .config import (
    DEFAULT_CONFIG_FILE,
    ClientConfig,
    apply_env_overrides,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
    validate_config,
)
from .connection_manager import ConnectionManager, TransportFactory
from .counter_store import CounterStore
from .enums import ConnectionStatus
from .exceptions import ConfigError, PersistenceError
from .i18n import get_message
from .identity_store import IdentityStore
from .models import ClientSnapshot
from .state_store import KEY_CLIENT_ID, KeyValueStore
from .transport import MqttTransport


STATE_LABEL_KEYS = {
    ConnectionStatus.CONNECTED: "state.connected",
    ConnectionStatus.CONNECTING: "state.connecting",
    ConnectionStatus.DISCONNECTED: "state.disconnected",
}

STATE_ICONS = {
    ConnectionStatus.CONNECTED: "🟢",
    ConnectionStatus.CONNECTING: "🟡",
    ConnectionStatus.DISCONNECTED: "🔴",
}


def format_snapshot(snapshot: ClientSnapshot, language: Optional[str] = None) -> str:
    """
    Render a client snapshot as a console status block.

    Args:
        snapshot: State to render
        language: Label language ('th' or 'en')

    Returns:
        Multi-line status text
    """
    label = get_message(STATE_LABEL_KEYS[snapshot.status], language)
    lines = [f"{STATE_ICONS[snapshot.status]} {label}"]
    if snapshot.message:
        lines[0] += f" | {snapshot.message}"

    lines.append(f"  {get_message('display.client_id', language)}: {snapshot.client_id or '-'}")
    lines.append(f"  {get_message('display.count', language)}: {snapshot.count}")
    if snapshot.last_updated:
        lines.append(f"  {get_message('display.last_updated', language)}: {snapshot.last_updated}")
    if snapshot.reconnect_attempts > 0:
        lines.append("  " + get_message("display.attempts", language, attempts=snapshot.reconnect_attempts))
    if snapshot.last_disconnect_at:
        lines.append(f"  {get_message('display.last_disconnect', language)}: {snapshot.last_disconnect_at}")
    if snapshot.heartbeat_active:
        lines.append("  " + get_message("display.heartbeat_active", language))

    return "\n".join(lines)


def load_runtime_config(
    config_path: Optional[str] = None,
    language: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ClientConfig:
    """
    Build the effective configuration.

    Precedence: command line, then environment (including .env), then the
    config file, then defaults.

    Raises:
        ConfigError: If an explicitly given config file is missing or invalid
    """
    if config_path:
        config = load_config_from_file(Path(config_path))
        if config is None:
            raise ConfigError(
                code="not_found",
                message=f"Could not load config from {config_path}",
                details={"file_path": config_path},
            )
    else:
        config = load_config_from_file(DEFAULT_CONFIG_FILE)
        if config is None:
            config = create_default_config()

    apply_env_overrides(config, os.environ if environ is None else environ)
    if language:
        config.language = language
    return config


def register_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    on_stop: Callable[[], None],
    on_reset: Callable[[], None],
) -> None:
    """Install SIGINT/SIGTERM for teardown and SIGUSR1 for reset, where supported."""
    handlers = [(signal.SIGINT, on_stop), (signal.SIGTERM, on_stop)]
    if hasattr(signal, "SIGUSR1"):
        handlers.append((signal.SIGUSR1, on_reset))

    for sig, handler in handlers:
        try:
            loop.add_signal_handler(sig, handler)
        except NotImplementedError:
            # For systems where add_signal_handler is not implemented (e.g., Windows)
            print("Warning: Signal handlers not fully supported on this platform.", file=sys.stderr)


async def run_client(
    config: ClientConfig,
    logger: Optional[AuditLogger] = None,
    transport_factory: Optional[TransportFactory] = None,
    stop_requested: Optional[asyncio.Event] = None,
) -> int:
    """
    Run the client until SIGINT/SIGTERM.

    Args:
        config: Effective configuration
        logger: Optional audit logger
        transport_factory: Creates each session (defaults to MqttTransport)
        stop_requested: Event that ends the run (set by the signal handlers)

    Returns:
        Exit code (1 if the client could not start)
    """
    store = KeyValueStore(config.persistence.state_file_path)
    manager = ConnectionManager(
        config=config,
        identity_store=IdentityStore(store, logger),
        counter_store=CounterStore(store, logger),
        transport_factory=transport_factory or (lambda: MqttTransport(config.broker, config.reconnect, logger)),
        logger=logger,
    )
    manager.add_listener(lambda snapshot: print(format_snapshot(snapshot, config.language) + "\n", flush=True))

    loop = asyncio.get_running_loop()
    if stop_requested is None:
        stop_requested = asyncio.Event()
    reset_tasks: set[asyncio.Task] = set()

    def request_reset() -> None:
        task = loop.create_task(manager.reset())
        reset_tasks.add(task)
        task.add_done_callback(reset_tasks.discard)

    register_signal_handlers(loop, stop_requested.set, request_reset)

    print(f"Broker: {config.broker.url}")
    try:
        await manager.start()
        await stop_requested.wait()
    except Exception as e:
        if logger:
            logger.log_error("CLI", "Client stopped on error", error=e)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await manager.shutdown()
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Handle the 'run' command."""
    try:
        config = load_runtime_config(args.config, args.language)
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    problems = validate_config(config)
    if problems:
        for problem in problems:
            print(f"Error: {problem}", file=sys.stderr)
        return 1

    logger = AuditLogger.from_config(
        level=config.logging.level,
        output_format=config.logging.output_format,
        output_stream=sys.stderr,
    )

    try:
        return asyncio.run(run_client(config, logger))
    except KeyboardInterrupt:
        return 130


def cmd_reset(args: argparse.Namespace) -> int:
    """Handle the 'reset' command."""
    try:
        config = load_runtime_config(args.config)
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    identity_store = IdentityStore(KeyValueStore(config.persistence.state_file_path))
    try:
        client_id = identity_store.reset()
    except PersistenceError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    print(get_message("identity.reset", config.language, client_id=client_id))
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Handle the 'status' command."""
    try:
        config = load_runtime_config(args.config)
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    store = KeyValueStore(config.persistence.state_file_path)
    try:
        client_id = store.get(KEY_CLIENT_ID)
    except PersistenceError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    counter = CounterStore(store).load()

    language = config.language
    print(f"State file: {store.file_path}")
    print(f"  {get_message('display.client_id', language)}: {client_id or '-'}")
    print(f"  {get_message('display.count', language)}: {counter.count if counter else 0}")
    if counter:
        print(f"  {get_message('display.last_updated', language)}: {counter.updated_at}")
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_CONFIG_FILE

    if args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1

        config = create_default_config(language=args.language or "th")
        if save_config_to_file(config, config_path):
            print(f"Configuration created at: {config_path}")
            return 0
        print(f"Error: Could not write {config_path}", file=sys.stderr)
        return 1

    try:
        config = load_config_from_file(config_path)
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    if config is None:
        print(f"No configuration found at: {config_path}")
        print("Use 'config init' to create a default configuration.")
        return 1

    if args.action == "show":
        print(f"Configuration from: {config_path}")
        print(f"  Broker: {config.broker.url}")
        print(f"  Reconnect: {'on' if config.reconnect.enabled else 'off'}, "
              f"every {config.reconnect.delay_seconds:g}s "
              f"(timeout {config.reconnect.connect_timeout_seconds:g}s)")
        print(f"  Heartbeat interval: {config.heartbeat.interval_seconds:g}s")
        print(f"  State file: {config.persistence.state_file_path}")
        print(f"  Log level: {config.logging.level}")
        print(f"  Language: {config.language}")
        return 0

    elif args.action == "validate":
        problems = validate_config(config)
        if problems:
            for problem in problems:
                print(f"Error: {problem}", file=sys.stderr)
            return 1

        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="counter-client",
        description="MQTT-over-WebSocket counter client",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'run' command
    run_parser = subparsers.add_parser(
        "run",
        help="Connect to the broker and show the client state",
    )
    run_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    run_parser.add_argument(
        "--language", "-l",
        choices=["th", "en"],
        default=None,
        help="Status message language (default: from config, th)",
    )
    run_parser.set_defaults(func=cmd_run)

    # 'reset' command
    reset_parser = subparsers.add_parser(
        "reset",
        help="Clear all stored data and generate a new client ID",
    )
    reset_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    reset_parser.set_defaults(func=cmd_reset)

    # 'status' command
    status_parser = subparsers.add_parser(
        "status",
        help="Show the stored client ID and counter",
    )
    status_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    status_parser.set_defaults(func=cmd_status)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.add_argument(
        "--language", "-l",
        choices=["th", "en"],
        default=None,
        help="Default language for new configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
