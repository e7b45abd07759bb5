"""
Token Manager for the Chat CLI.

This module keeps the signed-in user's tokens valid for as long as the process
runs. A foreground login obtains the initial token pair and wakes the refresh
loop; the refresh loop rotates the refresh token on a long interval and, after
every successful rotation, wakes the access loop, which mints a new access
token on a short interval. Both loops re-read the session file before every
write and only touch the field they own.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, List, Optional, TypeVar

from chat_client.auth.session_store import SessionStore, session_path
from chat_client.auth.signals import SignalCoordinator
from chat_shared.exceptions import (
    AuthError, ChatCliError, ErrorCode, LockBusyError, SessionError,
    SessionIOError, ValidationError, handle_exception
)
from chat_shared.interfaces import ITokenAuthority
from chat_shared.logging_config import AuditLogger, log_structured_error
from chat_shared.models import Session, SignalKind, TokenKind

logger = logging.getLogger(__name__)

REFRESH_TOKEN_INTERVAL = 23 * 60 * 60  # 23 hours
ACCESS_TOKEN_INTERVAL = 14 * 60  # 14 minutes
REQUEST_TIMEOUT = 20.0

T = TypeVar('T')


class LoopState(Enum):
    """Observable state of a renewal loop."""
    WAITING = "waiting"
    RENEWING = "renewing"
    SLEEPING = "sleeping"


async def _call_authority(call: Awaitable[T], timeout: float, what: str) -> T:
    """Await an authority call, turning timeouts and transport errors into AuthError."""
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise AuthError(
            f"Timed out after {timeout}s while trying to {what}",
            error_code=ErrorCode.NETWORK_TIMEOUT,
            cause=e
        )
    except AuthError:
        raise
    except ChatCliError as e:
        raise AuthError(f"Failed to {what}: {e.message}", cause=e)


class LoginAction:
    """
    Foreground login.

    Authenticates, mints the first access token, persists the session and
    emits LoginCompleted. Nothing is signalled unless every step succeeded.
    """

    def __init__(
        self,
        authority: ITokenAuthority,
        store: SessionStore,
        signals: SignalCoordinator,
        session_base_path: str,
        request_timeout: float = REQUEST_TIMEOUT,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.authority = authority
        self.store = store
        self.signals = signals
        self.session_base_path = session_base_path
        self.request_timeout = request_timeout
        self.audit_logger = audit_logger or AuditLogger()

    async def login(self, username: str, password: str) -> Session:
        """
        Log in and return the new session.

        Raises:
            ValidationError: empty username or password
            AuthError: bad credentials, transport failure or timeout
            LockBusyError, SessionIOError: the session could not be saved
        """
        if not username:
            raise ValidationError("Username is required", field_name='username')
        if not password:
            raise ValidationError("Password is required", field_name='password')

        logger.info(f"Logging in as {username}")

        try:
            refresh_token = await _call_authority(
                self.authority.authenticate(username, password),
                self.request_timeout,
                "log in"
            )
            if not refresh_token:
                raise AuthError("Token authority returned an empty refresh_token")
            access_token = await _call_authority(
                self.authority.exchange_for_access_token(refresh_token),
                self.request_timeout,
                "get access token"
            )
            if not access_token:
                raise AuthError("Token authority returned an empty access_token")
        except AuthError as e:
            self.audit_logger.log_authentication(username, success=False, failure_reason=e.message)
            raise

        session = Session(
            username=username,
            access_token=access_token,
            refresh_token=refresh_token,
        )
        self.store.save(session, session_path(self.session_base_path, username))

        self.audit_logger.log_authentication(username, success=True)
        logger.info(f"Logged in successfully as {username}")

        self.signals.emit(SignalKind.LOGIN_COMPLETED, username)
        return session


class _RenewalLoop:
    """Shared plumbing for the two renewal loops."""

    token_kind: TokenKind

    def __init__(
        self,
        authority: ITokenAuthority,
        store: SessionStore,
        signals: SignalCoordinator,
        session_base_path: str,
        interval: float,
        request_timeout: float = REQUEST_TIMEOUT,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.authority = authority
        self.store = store
        self.signals = signals
        self.session_base_path = session_base_path
        self.interval = interval
        self.request_timeout = request_timeout
        self.audit_logger = audit_logger or AuditLogger()

        self.state = LoopState.WAITING
        self.username: Optional[str] = None
        self.renewals = 0
        self.failures = 0

    def _path(self, username: str) -> str:
        return session_path(self.session_base_path, username)

    async def _exchange(self, refresh_token: str) -> str:
        raise NotImplementedError

    def _record_failure(self, username: str, error: ChatCliError, level: int = logging.ERROR) -> None:
        self.failures += 1
        log_structured_error(logger, error, username=username, level=level)
        self.audit_logger.log_token_renewal(
            username, self.token_kind.value, success=False, failure_reason=error.message
        )

    def _record_unexpected(self, username: str, error: Exception) -> None:
        """Last-resort handler for anything renew_once did not classify."""
        structured = handle_exception(error, context={'token_kind': self.token_kind.value})
        self._record_failure(username, structured)
        self.audit_logger.log_error(structured, username=username)

    async def _renew_guarded(self, username: str) -> bool:
        try:
            return await self.renew_once(username)
        except Exception as e:
            self._record_unexpected(username, e)
            return False

    def _persist(self, username: str, new_token: str) -> None:
        """
        Write ``new_token`` into the owned field of the on-disk session.

        The session is re-read immediately before the write so a sibling
        loop's update to the other field is carried over.
        """
        path = self._path(username)
        session = self.store.load(path)
        setattr(session, self.token_kind.value, new_token)
        self.store.save(session, path)

    async def renew_once(self, username: str) -> bool:
        """
        Run one renewal for ``username``.

        Returns False when the session could not be loaded or the authority
        refused the exchange, True otherwise (including a skipped write).
        """
        self.state = LoopState.RENEWING
        path = self._path(username)

        try:
            session = self.store.load(path)
        except SessionError as e:
            self._record_failure(username, e)
            return False

        try:
            new_token = await self._exchange(session.refresh_token)
            if not new_token:
                raise AuthError(f"Token authority returned an empty {self.token_kind.value}")
        except AuthError as e:
            self._record_failure(username, e)
            return False
        except Exception as e:
            self._record_failure(username, handle_exception(e, context={'path': path}))
            return False

        try:
            self._persist(username, new_token)
        except LockBusyError as e:
            self._record_failure(username, e, level=logging.WARNING)
            return True
        except SessionIOError as e:
            self._record_failure(username, e)
            return True
        except SessionError as e:
            self._record_failure(username, e)
            return False

        self.renewals += 1
        self.audit_logger.log_token_renewal(username, self.token_kind.value, success=True)
        return True


class RefreshTokenLoop(_RenewalLoop):
    """
    Rotates the refresh token.

    Waits for LoginCompleted, then renews and sleeps in a cycle. A failed load
    or exchange drops back to waiting for the next login; a login arriving
    while the loop sleeps restarts the cycle for that identity at once.
    """

    token_kind = TokenKind.REFRESH

    def __init__(self, *args, interval: float = REFRESH_TOKEN_INTERVAL, **kwargs):
        super().__init__(*args, interval=interval, **kwargs)

    async def _exchange(self, refresh_token: str) -> str:
        return await _call_authority(
            self.authority.exchange_refresh_token(refresh_token),
            self.request_timeout,
            "refresh token"
        )

    def _start_identity(self, username: str) -> None:
        # A refresh signal left over from the previous identity is stale
        self.signals.refresh_cycle_started.drain()
        self.username = username
        logger.info(f"Starting refresh token renewal for {username}")

    async def _sleep_or_login(self) -> Optional[str]:
        """Sleep for the interval; return a new identity if a login interrupts."""
        self.state = LoopState.SLEEPING
        try:
            return await asyncio.wait_for(
                self.signals.login_completed.receive(), timeout=self.interval
            )
        except asyncio.TimeoutError:
            return None

    async def run(self) -> None:
        while True:
            self.state = LoopState.WAITING
            self._start_identity(await self.signals.login_completed.receive())

            while True:
                username = self.username
                renewed_before = self.renewals
                if not await self._renew_guarded(username):
                    logger.warning(f"Refresh token renewal stopped for {username}; waiting for login")
                    break

                if self.renewals > renewed_before:
                    logger.info("Refresh token updated")
                    self.signals.emit(SignalKind.REFRESH_CYCLE_STARTED, username)

                new_login = await self._sleep_or_login()
                if new_login is not None:
                    self._start_identity(new_login)


class AccessTokenLoop(_RenewalLoop):
    """
    Mints access tokens.

    Starts after the first RefreshCycleStarted and never waits again: errors
    are logged and retried on the same interval. A newer RefreshCycleStarted
    switches the loop to that identity.
    """

    token_kind = TokenKind.ACCESS

    def __init__(self, *args, interval: float = ACCESS_TOKEN_INTERVAL, **kwargs):
        super().__init__(*args, interval=interval, **kwargs)

    async def _exchange(self, refresh_token: str) -> str:
        return await _call_authority(
            self.authority.exchange_for_access_token(refresh_token),
            self.request_timeout,
            "generate access token"
        )

    def _check_identity(self) -> None:
        newer = self.signals.refresh_cycle_started.poll()
        if newer is not None and newer != self.username:
            logger.info(f"Access token renewal switching to {newer}")
            self.username = newer

    async def run(self) -> None:
        self.state = LoopState.WAITING
        self.username = await self.signals.refresh_cycle_started.receive()
        logger.info(f"Starting access token renewal for {self.username}")

        while True:
            self._check_identity()
            renewed_before = self.renewals
            await self._renew_guarded(self.username)
            if self.renewals > renewed_before:
                logger.info("Access token updated")

            self.state = LoopState.SLEEPING
            await asyncio.sleep(self.interval)


class TokenManager:
    """
    Wires login and the renewal loops together and owns their tasks.

    The current identity is whatever the last successful login (or resume)
    returned; commands use it to find the session they should read.
    """

    def __init__(
        self,
        authority: ITokenAuthority,
        session_base_path: str,
        store: Optional[SessionStore] = None,
        signals: Optional[SignalCoordinator] = None,
        refresh_interval: float = REFRESH_TOKEN_INTERVAL,
        access_interval: float = ACCESS_TOKEN_INTERVAL,
        request_timeout: float = REQUEST_TIMEOUT,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.session_base_path = session_base_path
        self.store = store or SessionStore()
        self.signals = signals or SignalCoordinator()
        audit_logger = audit_logger or AuditLogger()

        shared = dict(
            store=self.store,
            signals=self.signals,
            session_base_path=session_base_path,
            request_timeout=request_timeout,
            audit_logger=audit_logger,
        )
        self.login_action = LoginAction(authority, **shared)
        self.refresh_loop = RefreshTokenLoop(authority, interval=refresh_interval, **shared)
        self.access_loop = AccessTokenLoop(authority, interval=access_interval, **shared)

        self._current_username: Optional[str] = None
        self._tasks: List[asyncio.Task] = []

        logger.info("Token manager initialized")

    @property
    def current_username(self) -> Optional[str]:
        return self._current_username

    def start(self) -> None:
        """Start both renewal loops as background tasks."""
        if self.is_running():
            return
        self._tasks = [
            asyncio.create_task(self.refresh_loop.run(), name="refresh-token-loop"),
            asyncio.create_task(self.access_loop.run(), name="access-token-loop"),
        ]
        logger.debug("Token renewal loops started")

    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def login(self, username: str, password: str) -> Session:
        session = await self.login_action.login(username, password)
        self._current_username = session.username
        return session

    def resume(self, username: str) -> Session:
        """
        Adopt an existing on-disk session without logging in again.

        Raises the SessionStore errors if the session cannot be loaded.
        """
        session = self.store.load(session_path(self.session_base_path, username))
        self._current_username = session.username
        self.signals.emit(SignalKind.LOGIN_COMPLETED, session.username)
        logger.info(f"Resumed session for {session.username}")
        return session

    def current_session(self) -> Session:
        """Load the session of the current identity."""
        if not self._current_username:
            raise AuthError("Not logged in; run 'login' first", error_code=ErrorCode.AUTH_NOT_LOGGED_IN)
        return self.store.load(session_path(self.session_base_path, self._current_username))

    async def shutdown(self) -> None:
        """Cancel the renewal loops. A loop that already died is logged, not raised."""
        logger.info("Shutting down token manager")
        for task in self._tasks:
            if not task.done():
                task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                log_structured_error(
                    logger,
                    handle_exception(e, context={'task': task.get_name()}),
                    level=logging.ERROR
                )
        self._tasks = []
