"""
HTTP API Clients for the Chat CLI.

This module provides the HTTP transport for the authentication service (token
issue and rotation) and the chat service (chat management, messaging and the
message stream), with retry logic and error mapping.
"""

import asyncio
import json
import logging
import random
import ssl
from typing import Any, Callable, Dict, List, Optional

import aiohttp
from aiohttp import ClientError, ClientSession, ClientTimeout

from chat_shared.exceptions import (
    AuthError, ChatCliError, ErrorCode, NetworkError, ValidationError
)
from chat_shared.interfaces import IChatService, ITokenAuthority
from chat_shared.models import Message

logger = logging.getLogger(__name__)


class APIClientError(ChatCliError):
    """Request rejected by a backend."""

    def __init__(self, message: str, status: Optional[int] = None, **kwargs):
        context = kwargs.pop('context', {})
        if status is not None:
            context['status'] = status
        error_code = kwargs.pop('error_code', ErrorCode.NETWORK_REQUEST_FAILED)
        super().__init__(message=message, error_code=error_code, context=context, **kwargs)
        self.status = status


class ServerError(APIClientError):
    """Server-side errors."""

    def __init__(self, message: str, status: Optional[int] = None, **kwargs):
        super().__init__(message, status=status, error_code=ErrorCode.NETWORK_SERVER_ERROR, **kwargs)


class RetryConfig:
    """Configuration for retry logic."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def delay_for(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter:
            delay *= (0.5 + random.random() * 0.5)
        return delay


def bearer_headers(access_token: str) -> Dict[str, str]:
    """Authorization header carrying the access token."""
    return {'Authorization': f'Bearer {access_token}'}


def build_ssl_context(ca_file: Optional[str]) -> Optional[ssl.SSLContext]:
    """TLS context trusting ``ca_file``, or None to use aiohttp's defaults."""
    if not ca_file:
        return None
    return ssl.create_default_context(cafile=ca_file)


class BaseAPIClient:
    """
    Shared aiohttp plumbing for the backend clients.

    Manages the HTTP session, retries network failures with exponential
    backoff, and maps HTTP status codes to structured errors.
    """

    user_agent = 'ChatCLI/1.0'

    def __init__(
        self,
        base_url: str,
        timeout: float = 20.0,
        retry_config: Optional[RetryConfig] = None,
        ssl_context: Optional[ssl.SSLContext] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = ClientTimeout(total=timeout)
        self.retry_config = retry_config or RetryConfig()
        self.ssl_context = ssl_context

        self._session: Optional[ClientSession] = None

        logger.info(f"{type(self).__name__} initialized for server: {self.base_url}")

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                keepalive_timeout=30,
                ssl=self.ssl_context if self.ssl_context is not None else True
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers={
                    'User-Agent': self.user_agent,
                    'Content-Type': 'application/json'
                }
            )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _make_request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        retry: bool = True
    ) -> Dict[str, Any]:
        """
        Make HTTP request with retry logic and error handling.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            path: API path
            data: Request body data
            params: Query parameters
            headers: Extra headers, e.g. the bearer token
            retry: Whether to retry on network failure

        Returns:
            Response data as dictionary

        Raises:
            AuthError: 401 or 403
            APIClientError: other 4xx
            ServerError: 5xx
            NetworkError: the server could not be reached
        """
        await self._ensure_session()

        url = f"{self.base_url}/{path.lstrip('/')}"
        max_attempts = (self.retry_config.max_retries if retry else 0) + 1
        last_exception: Optional[Exception] = None

        for attempt in range(max_attempts):
            try:
                logger.debug(f"Making {method} request to {url} (attempt {attempt + 1})")

                async with self._session.request(
                    method=method,
                    url=url,
                    json=data,
                    params=params,
                    headers=headers
                ) as response:
                    if response.status in (200, 201, 204):
                        try:
                            return await response.json(content_type=None) or {}
                        except (json.JSONDecodeError, aiohttp.ContentTypeError):
                            return {}

                    detail = await self._get_error_detail(response)
                    if response.status in (401, 403):
                        raise AuthError(
                            f"Authentication failed: {detail}",
                            error_code=ErrorCode.AUTH_TOKEN_REJECTED,
                            context={'status': response.status}
                        )
                    if response.status >= 500:
                        raise ServerError(f"Server error ({response.status}): {detail}", status=response.status)
                    raise APIClientError(f"Request failed ({response.status}): {detail}", status=response.status)

            except (ClientError, asyncio.TimeoutError, OSError) as e:
                last_exception = e
                logger.warning(f"Network error on attempt {attempt + 1}: {e}")

                if attempt + 1 >= max_attempts:
                    break

                delay = self.retry_config.delay_for(attempt)
                logger.info(f"Retrying in {delay:.1f} seconds...")
                await asyncio.sleep(delay)

        raise NetworkError(
            f"Network request failed after {max_attempts} attempts: {last_exception}",
            error_code=ErrorCode.NETWORK_CONNECTION_FAILED,
            cause=last_exception
        )

    async def _get_error_detail(self, response) -> str:
        """Extract error information from response."""
        try:
            body = await response.json(content_type=None)
            if isinstance(body, dict):
                return str(body.get('detail') or body.get('error') or body)
            return str(body)
        except (json.JSONDecodeError, aiohttp.ContentTypeError, ValueError):
            return await response.text() or "Unknown error"


class AuthAPIClient(BaseAPIClient, ITokenAuthority):
    """
    Client for the authentication service.

    Every failure, transport errors included, is reported as AuthError.
    """

    async def _token_request(self, path: str, payload: Dict[str, Any], field: str, what: str) -> str:
        try:
            response = await self._make_request('POST', path, data=payload)
        except AuthError:
            logger.error(f"Failed to {what}: credentials rejected")
            raise
        except ChatCliError as e:
            logger.error(f"Failed to {what}: {e}")
            raise AuthError(f"Failed to {what}: {e.message}", cause=e)

        token = response.get(field) if isinstance(response, dict) else None
        if not token:
            raise AuthError(f"Failed to {what}: response has no {field}")
        return token

    async def authenticate(self, username: str, password: str) -> str:
        try:
            return await self._token_request(
                '/api/v1/auth/login',
                {'username': username, 'password': password},
                'refresh_token',
                'login'
            )
        except AuthError as e:
            if e.error_code != ErrorCode.AUTH_TOKEN_REJECTED:
                raise
            raise AuthError(
                f"Invalid credentials for {username}",
                error_code=ErrorCode.AUTH_INVALID_CREDENTIALS,
                context=dict(e.context),
                cause=e,
                user_message="Invalid username or password"
            )

    async def exchange_refresh_token(self, refresh_token: str) -> str:
        return await self._token_request(
            '/api/v1/auth/refresh-token',
            {'refresh_token': refresh_token},
            'refresh_token',
            'get refresh token'
        )

    async def exchange_for_access_token(self, refresh_token: str) -> str:
        return await self._token_request(
            '/api/v1/auth/access-token',
            {'refresh_token': refresh_token},
            'access_token',
            'get access token'
        )


def parse_chat_id(chat_id: str) -> int:
    try:
        return int(chat_id)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid chat ID: {chat_id!r}", field_name='chat_id', cause=e)


class ChatAPIClient(BaseAPIClient, IChatService):
    """Client for the chat service."""

    async def create_chat(self, usernames: List[str]) -> str:
        if not usernames:
            raise ValidationError("At least one username is required", field_name='usernames')

        response = await self._make_request('POST', '/api/v1/chats', data={'usernames': usernames})
        return str(response['id'])

    async def delete_chat(self, chat_id: str) -> None:
        chat = parse_chat_id(chat_id)
        await self._make_request('DELETE', f'/api/v1/chats/{chat}')

    async def send_message(self, message: Message, access_token: str) -> None:
        chat = parse_chat_id(message.chat_id)
        logger.debug(f"Sending message to chat {chat} as {message.username}")
        await self._make_request(
            'POST',
            f'/api/v1/chats/{chat}/messages',
            data={'from': message.username, 'text': message.text},
            headers=bearer_headers(access_token),
            retry=False
        )

    async def connect_chat(
        self,
        chat_id: str,
        username: str,
        on_message: Optional[Callable[[Message], None]] = None
    ) -> None:
        """
        Stream a chat's messages until the server closes the stream.

        The stream is newline-delimited JSON, one ``{"from", "text"}`` object
        per line.
        """
        chat = parse_chat_id(chat_id)
        await self._ensure_session()
        url = f"{self.base_url}/api/v1/chats/{chat}/stream"

        try:
            async with self._session.get(
                url,
                params={'username': username},
                timeout=ClientTimeout(total=None, sock_connect=self.timeout.total)
            ) as response:
                if response.status != 200:
                    detail = await self._get_error_detail(response)
                    if response.status in (401, 403):
                        raise AuthError(f"Authentication failed: {detail}", error_code=ErrorCode.AUTH_TOKEN_REJECTED)
                    raise APIClientError(f"Failed to connect to chat ({response.status}): {detail}", status=response.status)

                async for raw_line in response.content:
                    line = raw_line.strip()
                    if not line:
                        continue
                    try:
                        payload = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning(f"Skipping malformed stream line: {line[:80]!r}")
                        continue

                    message = Message(
                        chat_id=str(chat),
                        username=payload.get('from', ''),
                        text=payload.get('text', ''),
                    )
                    if on_message:
                        on_message(message)
        except (ClientError, OSError) as e:
            logger.error(f"Error receiving message: {e}")
            raise NetworkError(f"Chat stream failed: {e}", cause=e)
