from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol, Set


@dataclass(frozen=True)
class HistoryMessage:
    text: str
    author_name: str
    timestamp: datetime
    message_id: int


@dataclass(frozen=True)
class MemberInfo:
    id: int
    name: str


class RenameStatus(enum.Enum):
    OK = "ok"
    PERMISSION_DENIED = "permission_denied"
    FAILURE = "failure"


@dataclass(frozen=True)
class RenameResult:
    status: RenameStatus
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status is RenameStatus.OK

    @classmethod
    def success(cls) -> "RenameResult":
        return cls(RenameStatus.OK)

    @classmethod
    def denied(cls, reason: str = "") -> "RenameResult":
        return cls(RenameStatus.PERMISSION_DENIED, reason)

    @classmethod
    def failure(cls, reason: str = "") -> "RenameResult":
        return cls(RenameStatus.FAILURE, reason)


class GuildPlatform(Protocol):
    """Everything the sync engine needs from the chat platform for one guild."""

    def get_member(self, user_id: int) -> Optional[MemberInfo]:
        pass

    def is_owner(self, user_id: int) -> bool:
        pass

    async def rename_member(self, user_id: int, nickname: Optional[str]) -> RenameResult:
        pass

    async def send_direct_message(self, user_id: int, text: str) -> bool:
        pass

    async def rename_channel(self, channel_id: int, name: str) -> RenameResult:
        pass

    def channel_name(self, channel_id: int) -> Optional[str]:
        pass

    async def fetch_history(
        self, channel_id: int, before_message_id: Optional[int], limit: int
    ) -> List[HistoryMessage]:
        """Return up to ``limit`` messages older than ``before_message_id``, newest first."""


class IncomingMessage(Protocol):
    content: str
    channel_id: int
    author_id: int
    author_name: str
    role_ids: Set[int]
    is_direct: bool

    async def react(self, emoji: str) -> None:
        pass

    async def reply(self, text: str) -> None:
        pass

