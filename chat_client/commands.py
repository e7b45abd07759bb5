"""
Interactive commands for the Chat CLI.

This module parses REPL lines into commands, runs them against the token
manager and the chat service, and hosts the prompt loop itself.
"""

import argparse
import asyncio
import logging
import shlex
import signal
from typing import Callable, Dict, List, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout
from prompt_toolkit.shortcuts import clear

from chat_client.auth.token_manager import TokenManager
from chat_shared.exceptions import ChatCliError, ValidationError, handle_exception
from chat_shared.interfaces import IChatService
from chat_shared.models import Message

logger = logging.getLogger(__name__)

WELCOME = "Welcome to Chat CLI. Type 'exit' to quit or press Ctrl+C."
PROMPT = "> "
EXIT_COMMANDS = ('exit', 'quit', 'q')

COMMAND_HELP = [
    ("login --username U --password P", "Login to the chat"),
    ("create-chat --username U [--username U2 ...]", "Create a new chat"),
    ("delete-chat --chat-id ID", "Delete an existing chat"),
    ("send-message --chat-id ID MESSAGE", "Send message to chat"),
    ("connect-chat --chat-id ID --username U", "Connect to chat"),
    ("whoami", "Show the signed-in user"),
    ("clear", "Clear the screen"),
    ("exit", "Quit (also 'quit', 'q')"),
]


class CommandParser(argparse.ArgumentParser):
    """ArgumentParser that reports problems instead of exiting the process."""

    def error(self, message):
        raise ValidationError(f"{self.prog}: {message}")

    def exit(self, status=0, message=None):
        if message:
            raise ValidationError(message.strip())


def build_parser() -> CommandParser:
    parser = CommandParser(prog='chat-cli', add_help=False)
    subparsers = parser.add_subparsers(dest='command', parser_class=CommandParser)

    login = subparsers.add_parser('login', add_help=False, help="Login to the chat")
    login.add_argument('--username', required=True, help="Username for login")
    login.add_argument('--password', required=True, help="Password for login")

    create = subparsers.add_parser('create-chat', add_help=False, help="Create a new chat")
    create.add_argument('--username', dest='usernames', action='append', required=True,
                        help="Username to add to chat (can be specified multiple times)")

    delete = subparsers.add_parser('delete-chat', add_help=False, help="Delete an existing chat")
    delete.add_argument('--chat-id', required=True, help="Chat ID to delete")

    send = subparsers.add_parser('send-message', add_help=False, help="Send message to chat")
    send.add_argument('--chat-id', required=True, help="Chat ID to send message to")
    send.add_argument('text', nargs='+', metavar='MESSAGE', help="Message text")

    connect = subparsers.add_parser('connect-chat', add_help=False, help="Connect to chat")
    connect.add_argument('--chat-id', required=True, help="Chat ID to connect to")
    connect.add_argument('--username', required=True, help="Username to connect to chat")

    subparsers.add_parser('whoami', add_help=False, help="Show the signed-in user")
    subparsers.add_parser('help', add_help=False, help="Show available commands")
    return parser


class ChatCommands:
    """Executes parsed REPL commands."""

    def __init__(
        self,
        token_manager: TokenManager,
        chat_service: IChatService,
        output: Callable[[str], None] = print
    ):
        self.token_manager = token_manager
        self.chat_service = chat_service
        self.output = output
        self.parser = build_parser()

        self._handlers: Dict[str, Callable] = {
            'login': self.login,
            'create-chat': self.create_chat,
            'delete-chat': self.delete_chat,
            'send-message': self.send_message,
            'connect-chat': self.connect_chat,
            'whoami': self.whoami,
            'help': self.show_help,
        }

    async def execute(self, line: str) -> bool:
        """
        Run one REPL line.

        Returns False when the line asks the REPL to stop. Command failures
        are printed and never end the REPL.
        """
        line = line.strip()
        if not line:
            return True
        if line in EXIT_COMMANDS:
            self.output("Goodbye!")
            return False
        if line == 'clear':
            clear()
            return True

        try:
            args = self.parser.parse_args(shlex.split(line))
            handler = self._handlers.get(args.command)
            if handler is None:
                raise ValidationError(f"Unknown command: {line.split()[0]}")
            await handler(args)
        except ChatCliError as e:
            logger.debug(f"Command failed: {e.to_dict()}")
            self.output(f"Error: {e.user_message}")
        except ValueError as e:
            # shlex reports unbalanced quotes as ValueError
            self.output(f"Error: {e}")
        except Exception as e:
            logger.exception("Unexpected error while running command")
            self.output(f"Error: {handle_exception(e).user_message}")
        return True

    async def login(self, args) -> None:
        session = await self.token_manager.login(args.username, args.password)
        self.output(f"Logged in as {session.username}")

    async def create_chat(self, args) -> None:
        logger.info(f"Creating chat for {args.usernames}")
        chat_id = await self.chat_service.create_chat(args.usernames)
        self.output(f"Chat created with ID: {chat_id}")

    async def delete_chat(self, args) -> None:
        await self.chat_service.delete_chat(args.chat_id)
        self.output(f"Chat {args.chat_id} deleted")

    async def send_message(self, args) -> None:
        session = self.token_manager.current_session()
        message = Message(
            chat_id=args.chat_id,
            username=session.username,
            text=' '.join(args.text),
        )
        await self.chat_service.send_message(message, session.access_token)
        self.output("Message sent")

    async def connect_chat(self, args) -> None:
        self.output(f"Connected to chat {args.chat_id}")
        await self.chat_service.connect_chat(args.chat_id, args.username, on_message=self._show_message)
        self.output(f"Chat {args.chat_id} stream closed")

    def _show_message(self, message: Message) -> None:
        self.output(f"[{message.username}]: {message.text}")

    async def whoami(self, args) -> None:
        username = self.token_manager.current_username
        self.output(username if username else "Not logged in")

    async def show_help(self, args=None) -> None:
        lines: List[str] = ["Commands:"]
        lines.extend(f"  {usage:<44} {summary}" for usage, summary in COMMAND_HELP)
        self.output('\n'.join(lines))


async def _run_interruptible(commands: ChatCommands, line: str) -> bool:
    """Run a command; SIGINT cancels only that command."""
    loop = asyncio.get_running_loop()
    task = asyncio.create_task(commands.execute(line))
    interrupted = False

    def on_sigint() -> None:
        nonlocal interrupted
        interrupted = True
        task.cancel()

    try:
        loop.add_signal_handler(signal.SIGINT, on_sigint)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        handler_installed = False

    try:
        return await task
    except asyncio.CancelledError:
        if not interrupted:
            raise
        commands.output("Command cancelled")
        return True
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)


async def run_repl(commands: ChatCommands, session: Optional[PromptSession] = None) -> None:
    """
    Read and execute commands until exit or end of input.

    Ctrl+C at the prompt discards the current line.
    """
    session = session or PromptSession(history=InMemoryHistory())
    commands.output(WELCOME)

    with patch_stdout():
        while True:
            try:
                line = await session.prompt_async(PROMPT)
            except KeyboardInterrupt:
                continue
            except EOFError:
                commands.output("Goodbye!")
                break

            if not await _run_interruptible(commands, line):
                break
