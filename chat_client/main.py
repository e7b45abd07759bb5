"""
Main entry point for the Chat CLI.

This module loads configuration, sets up logging, starts the background token
renewal loops and runs the interactive command prompt.
"""

import sys
import argparse
import asyncio
import logging
import signal
from typing import Optional

from chat_client.api_client import (
    AuthAPIClient, ChatAPIClient, RetryConfig, build_ssl_context
)
from chat_client.auth.token_manager import TokenManager
from chat_client.commands import ChatCommands, run_repl
from chat_client.config import ClientConfiguration
from chat_shared.exceptions import (
    ChatCliError, ConfigurationError, ErrorCode, SessionError
)
from chat_shared.logging_config import LogFormat, LogLevel, setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def parse_arguments(argv: Optional[list] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="chat-cli",
        description="Chat CLI",
        epilog="""
Examples:
  %(prog)s                              # Start the interactive prompt
  %(prog)s --resume alice               # Keep alice's saved session fresh
  %(prog)s --log-level debug --log-file chat.log
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config-path", type=str, metavar="FILE",
                              help="Path to configuration file")
    config_group.add_argument("--session-file", type=str, metavar="PATH",
                              help="Base path of the per-user session files")
    config_group.add_argument("--resume", type=str, metavar="USER",
                              help="Resume token renewal for USER's saved session")

    logging_group = parser.add_argument_group('Logging')
    logging_group.add_argument("--log-level", "-l", type=str.lower, metavar="LEVEL",
                               choices=[level.value.lower() for level in LogLevel],
                               help="Log level (debug, info, warning, error, critical)")
    logging_group.add_argument("--log-file", type=str, metavar="FILE",
                               help="Also write JSON logs to FILE")
    logging_group.add_argument("--log-format", type=str,
                               choices=[fmt.value for fmt in LogFormat],
                               help="Console log format")
    logging_group.add_argument("--debug", action="store_true",
                               help="Enable debug logging")

    return parser.parse_args(argv)


def load_configuration(args) -> ClientConfiguration:
    """Load configuration and apply command line overrides."""
    config = ClientConfiguration(args.config_path)

    if args.session_file:
        config.set_override('session_file', args.session_file)
    if args.debug:
        config.set_override('log_level', 'DEBUG')
    elif args.log_level:
        config.set_override('log_level', args.log_level.upper())
    if args.log_file:
        config.set_override('log_file', args.log_file)
    if args.log_format:
        config.set_override('log_format', args.log_format)

    return config


def configure_logging(config: ClientConfiguration) -> None:
    """Configure logging from the effective configuration."""
    try:
        log_level = LogLevel(str(config.get_log_level()).upper())
        log_format = LogFormat(str(config.get_log_format()).lower())
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid logging configuration: {e}",
            ErrorCode.CONFIG_INVALID_VALUE,
            config_key='logging',
            cause=e
        )

    setup_logging(
        log_level=log_level,
        log_format=log_format,
        log_file=config.get_log_file(),
        max_file_size=int(config.get_config('logging.max_size', 10485760)),
        backup_count=int(config.get_config('logging.backup_count', 3))
    )

    # aiohttp is chatty below WARNING
    if log_level != LogLevel.DEBUG:
        logging.getLogger('aiohttp').setLevel(logging.WARNING)


def build_clients(config: ClientConfiguration):
    """Create the auth and chat HTTP clients."""
    retry_config = RetryConfig(
        max_retries=int(config.get_config('server.retry_attempts', 3)),
        base_delay=float(config.get_config('server.retry_delay', 1.0))
    )
    timeout = config.get_request_timeout()

    auth_client = AuthAPIClient(
        config.get_auth_address(),
        timeout=timeout,
        retry_config=retry_config,
        ssl_context=build_ssl_context(config.get_ca_file('auth'))
    )
    chat_client = ChatAPIClient(
        config.get_chat_address(),
        timeout=timeout,
        retry_config=retry_config,
        ssl_context=build_ssl_context(config.get_ca_file('chat'))
    )
    return auth_client, chat_client


async def run(args, config: ClientConfiguration) -> int:
    """Run the token manager and the prompt until the user quits."""
    auth_client, chat_client = build_clients(config)

    token_manager = TokenManager(
        auth_client,
        config.get_session_file(),
        refresh_interval=config.get_refresh_interval(),
        access_interval=config.get_access_interval(),
        request_timeout=config.get_request_timeout()
    )
    commands = ChatCommands(token_manager, chat_client)

    loop = asyncio.get_running_loop()
    repl_task = None
    try:
        token_manager.start()

        if args.resume:
            try:
                token_manager.resume(args.resume)
                print(f"Resumed session for {args.resume}")
            except SessionError as e:
                logger.warning(f"Could not resume session for {args.resume}: {e.message}")
                print(f"Error: {e.user_message}")

        repl_task = asyncio.create_task(run_repl(commands), name="repl")
        loop.add_signal_handler(signal.SIGTERM, repl_task.cancel)

        try:
            await repl_task
        except asyncio.CancelledError:
            print("\nReceived interrupt signal. Exiting...")
            return EXIT_INTERRUPTED
        return EXIT_OK

    finally:
        if repl_task is not None:
            loop.remove_signal_handler(signal.SIGTERM)
        await token_manager.shutdown()
        await auth_client.close()
        await chat_client.close()


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the client."""
    args = parse_arguments(argv)

    try:
        config = load_configuration(args)
        configure_logging(config)
        return asyncio.run(run(args, config))

    except ConfigurationError as e:
        print(f"Configuration error: {e.user_message}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except ChatCliError as e:
        print(f"Error: {e.user_message}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except Exception as e:
        print(f"Fatal error: {str(e)}", file=sys.stderr)
        logger.exception("Fatal error in main")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
