"""
Core interfaces for the Chat CLI.

This module defines the abstract interfaces that the token lifecycle manager
and the commands depend on, so the network transport and the locking
mechanism can be swapped without touching the renewal logic.
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from .models import Message


class ITokenAuthority(ABC):
    """Remote authority that issues and rotates tokens."""

    @abstractmethod
    async def authenticate(self, username: str, password: str) -> str:
        """Exchange credentials for a refresh token."""
        pass

    @abstractmethod
    async def exchange_refresh_token(self, refresh_token: str) -> str:
        """Exchange a refresh token for a new refresh token."""
        pass

    @abstractmethod
    async def exchange_for_access_token(self, refresh_token: str) -> str:
        """Exchange a refresh token for a new access token."""
        pass


class IChatService(ABC):
    """Chat backend operations used by the commands."""

    @abstractmethod
    async def create_chat(self, usernames: List[str]) -> str:
        """Create a chat and return its ID."""
        pass

    @abstractmethod
    async def delete_chat(self, chat_id: str) -> None:
        """Delete a chat."""
        pass

    @abstractmethod
    async def send_message(self, message: Message, access_token: str) -> None:
        """Send a message on behalf of the token's identity."""
        pass

    @abstractmethod
    async def connect_chat(
        self,
        chat_id: str,
        username: str,
        on_message: Optional[Callable[[Message], None]] = None
    ) -> None:
        """Stream messages of a chat until the stream ends."""
        pass


class IResourceLock(ABC):
    """Non-blocking exclusive lock on a named resource."""

    @abstractmethod
    def try_acquire(self) -> bool:
        """Take the lock if it is free. Never waits."""
        pass

    @abstractmethod
    def release(self) -> None:
        """Release the lock. Safe to call when not held."""
        pass
