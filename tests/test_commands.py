"""
Unit tests for the REPL commands.
"""

import asyncio
import contextlib
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from chat_client.commands import ChatCommands, build_parser, run_repl
from chat_shared.exceptions import (
    AuthError, ErrorCode, NetworkError, SessionNotFoundError, ValidationError
)
from chat_shared.models import Message, Session


@pytest.fixture
def output():
    return []


@pytest.fixture
def token_manager():
    manager = MagicMock()
    manager.login = AsyncMock(
        return_value=Session(username="alice", access_token="at1", refresh_token="rt1")
    )
    manager.current_username = None
    return manager


@pytest.fixture
def chat_service():
    service = MagicMock()
    service.create_chat = AsyncMock(return_value="7")
    service.delete_chat = AsyncMock()
    service.send_message = AsyncMock()
    service.connect_chat = AsyncMock()
    return service


@pytest.fixture
def commands(token_manager, chat_service, output):
    return ChatCommands(token_manager, chat_service, output=output.append)


class TestCommandParser:
    """Test REPL line parsing."""

    def test_create_chat_collects_usernames(self):
        args = build_parser().parse_args(
            ['create-chat', '--username', 'alice', '--username', 'bob']
        )

        assert args.usernames == ['alice', 'bob']

    def test_send_message_joins_words(self):
        args = build_parser().parse_args(['send-message', '--chat-id', '7', 'hello', 'there'])

        assert args.chat_id == '7'
        assert args.text == ['hello', 'there']

    def test_errors_raise_instead_of_exiting(self):
        with pytest.raises(ValidationError):
            build_parser().parse_args(['login', '--username', 'alice'])

    def test_unknown_command_raises(self):
        with pytest.raises(ValidationError):
            build_parser().parse_args(['dance'])


class TestChatCommands:
    """Test command execution."""

    @pytest.mark.asyncio
    async def test_login(self, commands, token_manager, output):
        assert await commands.execute("login --username alice --password x")

        token_manager.login.assert_awaited_once_with("alice", "x")
        assert output == ["Logged in as alice"]

    @pytest.mark.asyncio
    async def test_login_failure_is_printed(self, commands, token_manager, output):
        token_manager.login.side_effect = AuthError(
            "invalid credentials", error_code=ErrorCode.AUTH_INVALID_CREDENTIALS
        )

        assert await commands.execute("login --username alice --password bad")

        assert output == ["Error: invalid credentials"]

    @pytest.mark.asyncio
    async def test_create_chat(self, commands, chat_service, output):
        await commands.execute("create-chat --username alice --username bob")

        chat_service.create_chat.assert_awaited_once_with(['alice', 'bob'])
        assert output == ["Chat created with ID: 7"]

    @pytest.mark.asyncio
    async def test_delete_chat(self, commands, chat_service, output):
        await commands.execute("delete-chat --chat-id 7")

        chat_service.delete_chat.assert_awaited_once_with('7')
        assert output == ["Chat 7 deleted"]

    @pytest.mark.asyncio
    async def test_send_message_uses_current_session(self, commands, token_manager, chat_service, output):
        token_manager.current_session.return_value = Session(
            username="alice", access_token="at2", refresh_token="rt2"
        )

        await commands.execute('send-message --chat-id 7 "hello world" again')

        message, access_token = chat_service.send_message.await_args.args
        assert (message.chat_id, message.username, message.text) == ("7", "alice", "hello world again")
        assert access_token == "at2"
        assert output == ["Message sent"]

    @pytest.mark.asyncio
    async def test_send_message_requires_login(self, commands, token_manager, chat_service, output):
        token_manager.current_session.side_effect = AuthError(
            "Not logged in; run 'login' first", error_code=ErrorCode.AUTH_NOT_LOGGED_IN
        )

        await commands.execute("send-message --chat-id 7 hi")

        chat_service.send_message.assert_not_awaited()
        assert output == ["Error: Not logged in; run 'login' first"]

    @pytest.mark.asyncio
    async def test_send_message_missing_session(self, commands, token_manager, output):
        token_manager.current_session.side_effect = SessionNotFoundError("Session file not found: x")

        await commands.execute("send-message --chat-id 7 hi")

        assert output == ["Error: Session file not found: x"]

    @pytest.mark.asyncio
    async def test_connect_chat_prints_messages(self, commands, chat_service, output):
        async def stream(chat_id, username, on_message=None):
            on_message(Message(chat_id=chat_id, username="bob", text="hello"))

        chat_service.connect_chat.side_effect = stream

        await commands.execute("connect-chat --chat-id 7 --username alice")

        assert output == ["Connected to chat 7", "[bob]: hello", "Chat 7 stream closed"]

    @pytest.mark.asyncio
    async def test_transport_error_does_not_stop_repl(self, commands, chat_service, output):
        chat_service.delete_chat.side_effect = NetworkError("connection refused")

        assert await commands.execute("delete-chat --chat-id 7")

        assert output == ["Error: connection refused"]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported(self, commands, chat_service, output):
        chat_service.create_chat.side_effect = RuntimeError("boom")

        assert await commands.execute("create-chat --username alice")

        assert output == ["Error: boom"]

    @pytest.mark.asyncio
    async def test_whoami(self, commands, token_manager, output):
        await commands.execute("whoami")
        token_manager.current_username = "alice"
        await commands.execute("whoami")

        assert output == ["Not logged in", "alice"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("line", ["exit", "quit", "q"])
    async def test_exit_commands(self, commands, output, line):
        assert not await commands.execute(line)
        assert output == ["Goodbye!"]

    @pytest.mark.asyncio
    async def test_blank_line(self, commands, output):
        assert await commands.execute("   ")
        assert output == []

    @pytest.mark.asyncio
    async def test_unbalanced_quotes(self, commands, output):
        assert await commands.execute('send-message --chat-id 7 "oops')
        assert output[0].startswith("Error:")

    @pytest.mark.asyncio
    async def test_help_lists_commands(self, commands, output):
        await commands.execute("help")

        for name in ("login", "create-chat", "delete-chat", "send-message", "connect-chat", "exit"):
            assert name in output[0]

    @pytest.mark.asyncio
    async def test_clear(self, commands, output):
        with patch('chat_client.commands.clear') as clear_screen:
            assert await commands.execute("clear")

        clear_screen.assert_called_once()


class TestRunRepl:
    """Test the prompt loop."""

    @pytest.fixture(autouse=True)
    def plain_stdout(self, monkeypatch):
        monkeypatch.setattr("chat_client.commands.patch_stdout", contextlib.nullcontext)

    @pytest.mark.asyncio
    async def test_runs_lines_until_exit(self, commands, token_manager, output):
        session = MagicMock()
        session.prompt_async = AsyncMock(side_effect=["whoami", "exit", "whoami"])

        await run_repl(commands, session=session)

        assert output == [
            "Welcome to Chat CLI. Type 'exit' to quit or press Ctrl+C.",
            "Not logged in",
            "Goodbye!",
        ]

    @pytest.mark.asyncio
    async def test_end_of_input_stops(self, commands, output):
        session = MagicMock()
        session.prompt_async = AsyncMock(side_effect=[KeyboardInterrupt(), EOFError()])

        await run_repl(commands, session=session)

        assert output[-1] == "Goodbye!"
        assert session.prompt_async.await_count == 2

    @pytest.mark.asyncio
    async def test_sigint_cancels_running_command(self, commands, chat_service, output):
        started = asyncio.Event()

        async def stream(chat_id, username, on_message=None):
            started.set()
            await asyncio.sleep(60)

        chat_service.connect_chat.side_effect = stream
        session = MagicMock()
        session.prompt_async = AsyncMock(side_effect=["connect-chat --chat-id 7 --username alice", "exit"])

        handlers = {}
        loop = asyncio.get_running_loop()

        with patch.object(loop, 'add_signal_handler', side_effect=lambda sig, cb: handlers.update({sig: cb})), \
                patch.object(loop, 'remove_signal_handler'):
            repl = asyncio.create_task(run_repl(commands, session=session))
            await asyncio.wait_for(started.wait(), timeout=1)
            next(iter(handlers.values()))()
            await asyncio.wait_for(repl, timeout=1)

        assert "Command cancelled" in output
        assert output[-1] == "Goodbye!"
