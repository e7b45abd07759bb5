"""
Core data models for the Chat CLI.

This module defines the persisted session record, the cached chat messages it
carries, and the signal kinds used to sequence login and token renewal.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any
from enum import Enum


class SignalKind(Enum):
    """Events exchanged between login and the renewal loops."""
    LOGIN_COMPLETED = "login_completed"
    REFRESH_CYCLE_STARTED = "refresh_cycle_started"


class TokenKind(Enum):
    """Token kinds handled by the renewal loops."""
    REFRESH = "refresh_token"
    ACCESS = "access_token"


@dataclass
class Message:
    """A chat message cached alongside the session."""
    chat_id: str
    username: str
    text: str
    time: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'chat_id': self.chat_id,
            'username': self.username,
            'text': self.text,
            'time': self.time.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Message':
        return cls(
            chat_id=str(data['chat_id']),
            username=data['username'],
            text=data['text'],
            time=datetime.fromisoformat(data['time']),
        )


@dataclass
class Session:
    """
    The persisted record for one signed-in identity.

    The refresh token is owned by the refresh loop and the access token by the
    access loop; everything else is written once at login.
    """
    username: str
    access_token: str
    refresh_token: str
    messages: List[Message] = field(default_factory=list)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if not self.username:
            raise ValueError("Session username cannot be empty")
        if not self.refresh_token:
            raise ValueError("Session refresh token cannot be empty")
        if not self.access_token:
            raise ValueError("Session access token cannot be empty")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with a fixed key order so identical sessions give identical files."""
        return {
            'refresh_token': self.refresh_token,
            'access_token': self.access_token,
            'username': self.username,
            'messages': [message.to_dict() for message in self.messages],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Session':
        return cls(
            username=data['username'],
            access_token=data['access_token'],
            refresh_token=data['refresh_token'],
            messages=[Message.from_dict(m) for m in data.get('messages') or []],
        )
