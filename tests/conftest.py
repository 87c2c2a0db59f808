import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

import pytest

from core.config import AutoRenameConfig, PermissionAction, PermissionConfig
from core.mappings import UserMappingStore
from core.platform import HistoryMessage, MemberInfo, RenameResult

SYNC_CHANNEL = 1000
RENAME_CHANNEL = 2000
EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def at(seconds: int) -> datetime:
    return EPOCH + timedelta(seconds=seconds)


class FakePlatform:
    def __init__(self):
        self.members: Dict[int, MemberInfo] = {}
        self.owner_id: Optional[int] = None
        self.rename_results: Dict[int, RenameResult] = {}
        self.renames: List[tuple] = []
        self.direct_messages: List[tuple] = []
        self.dm_enabled = True
        self.channel_names: Dict[int, str] = {}
        self.channel_renames: List[tuple] = []
        self.history: Dict[int, List[HistoryMessage]] = {}
        self.history_calls: List[tuple] = []

    def add_member(self, user_id: int, name: str) -> MemberInfo:
        member = MemberInfo(id=user_id, name=name)
        self.members[user_id] = member
        return member

    def get_member(self, user_id):
        return self.members.get(user_id)

    def is_owner(self, user_id):
        return self.owner_id == user_id

    async def rename_member(self, user_id, nickname):
        result = self.rename_results.get(user_id, RenameResult.success())
        if isinstance(result, Exception):
            raise result
        if result.ok:
            self.renames.append((user_id, nickname))
        return result

    async def send_direct_message(self, user_id, text):
        if not self.dm_enabled:
            return False
        self.direct_messages.append((user_id, text))
        return True

    def channel_name(self, channel_id):
        return self.channel_names.get(channel_id)

    async def rename_channel(self, channel_id, name):
        self.channel_renames.append((channel_id, name))
        self.channel_names[channel_id] = name
        return RenameResult.success()

    async def fetch_history(self, channel_id, before_message_id, limit):
        self.history_calls.append((before_message_id, limit))
        messages = self.history.get(channel_id, [])
        start = 0
        if before_message_id is not None:
            ids = [message.message_id for message in messages]
            start = ids.index(before_message_id) + 1
        return messages[start:start + limit]

    def load_history(self, channel_id, texts_with_times):
        """Store history newest-first; message ids count down with age."""
        total = len(texts_with_times)
        self.history[channel_id] = [
            HistoryMessage(text=text, author_name="bridge", timestamp=at(seconds), message_id=total - index)
            for index, (text, seconds) in enumerate(texts_with_times)
        ]


@dataclass
class FakeMessage:
    content: str
    channel_id: int = SYNC_CHANNEL
    author_id: int = 1
    author_name: str = "tester"
    role_ids: Set[int] = field(default_factory=set)
    is_direct: bool = False
    reactions: List[str] = field(default_factory=list)
    replies: List[str] = field(default_factory=list)

    async def react(self, emoji):
        self.reactions.append(emoji)

    async def reply(self, text):
        self.replies.append(text)


def write_mappings(path, mappings):
    path.write_text(json.dumps({"Mappings": mappings}), encoding="utf-8")


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def make_store(tmp_path):
    def _make(mappings=None):
        path = tmp_path / "user_mappings.json"
        write_mappings(path, mappings or {})
        return UserMappingStore(path)

    return _make


@pytest.fixture
def everyone_permissions():
    return {action: PermissionConfig(allow_everyone=True) for action in PermissionAction}


@pytest.fixture
def rename_config():
    return AutoRenameConfig(enabled=True, require_authorization=False, channel_ids={RENAME_CHANNEL})