"""Replays channel history to find the latest nickname per mapped user."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Set, Tuple

from .config import ClearBehavior
from .mappings import UserMappingStore
from .parser import NicknameCleared, NicknameSet, first_name, parse_clear, parse_set
from .platform import GuildPlatform, HistoryMessage

log = logging.getLogger(__name__)

PAGE_SIZE = 100


@dataclass(frozen=True)
class ReconciledChange:
    user_id: int
    facebook_name: str
    nickname: Optional[str]
    timestamp: datetime


@dataclass
class ReconciliationResult:
    by_user: Dict[int, ReconciledChange] = field(default_factory=dict)
    messages_processed: int = 0

    @property
    def user_ids(self) -> Set[int]:
        return set(self.by_user)

    def changes(self) -> Dict[str, Optional[str]]:
        """Facebook name (as written in the winning message) -> desired nickname."""
        return {change.facebook_name: change.nickname for change in self.by_user.values()}

    def record(self, change: ReconciledChange) -> bool:
        current = self.by_user.get(change.user_id)
        if current is not None and change.timestamp <= current.timestamp:
            return False
        self.by_user[change.user_id] = change
        return True


class HistoryReconciler:
    def __init__(
        self,
        mappings: UserMappingStore,
        platform: GuildPlatform,
        clear_behavior: ClearBehavior,
        *,
        page_size: int = PAGE_SIZE,
    ) -> None:
        self.mappings = mappings
        self.platform = platform
        self.clear_behavior = clear_behavior
        self.page_size = page_size

    def desired_for_clear(self, target: str, user_id: int) -> Optional[str]:
        """Nickname a cleared user should get under the configured behavior."""
        if self.clear_behavior is ClearBehavior.CLEAR_COMPLETELY:
            return None
        # target may be the "your" sentinel, so use the best mapped name instead
        preferred = self.mappings.preferred_name(user_id)
        return first_name(preferred or target)

    def _event_for(self, message: HistoryMessage) -> Optional[Tuple[str, Optional[str], int]]:
        cleared = parse_clear(message.text)
        if cleared is not None:
            return self._from_clear(cleared)
        nickname_set = parse_set(message.text)
        if nickname_set is not None:
            return self._from_set(nickname_set)
        return None

    def _from_clear(self, event: NicknameCleared) -> Optional[Tuple[str, Optional[str], int]]:
        if self.clear_behavior is ClearBehavior.DO_NOTHING or event.target is None:
            return None
        user_id = self.mappings.resolve(event.target)
        if user_id is None:
            log.warning("could not resolve '%s' to a Discord user", event.target)
            return None
        return event.target, self.desired_for_clear(event.target, user_id), user_id

    def _from_set(self, event: NicknameSet) -> Optional[Tuple[str, Optional[str], int]]:
        user_id = self.mappings.resolve(event.target)
        if user_id is None:
            log.warning("could not resolve '%s' to a Discord user", event.target)
            return None
        return event.target, event.nickname, user_id

    async def find_latest_changes(self, channel_id: int, message_count: int) -> ReconciliationResult:
        result = ReconciliationResult()
        before: Optional[int] = None

        while result.messages_processed < message_count:
            batch_size = min(self.page_size, message_count - result.messages_processed)
            page = await self.platform.fetch_history(channel_id, before, batch_size)
            if not page:
                break

            for message in page:
                found = self._event_for(message)
                if found is None:
                    continue
                facebook_name, nickname, user_id = found
                display = nickname if nickname is not None else "(cleared)"
                change = ReconciledChange(user_id, facebook_name, nickname, message.timestamp)
                if result.record(change):
                    log.debug("found: '%s' -> '%s' from %s", facebook_name, display, message.timestamp)
                else:
                    log.debug("skipping older: '%s' -> '%s' from %s", facebook_name, display, message.timestamp)

            before = page[-1].message_id
            result.messages_processed += len(page)
            if len(page) < batch_size:
                break

        log.info(
            "processed %d messages, found %d unique users",
            result.messages_processed,
            len(result.by_user),
        )
        return result

    def reset_fill(self, result: ReconciliationResult) -> Dict[str, Optional[str]]:
        """Latest changes plus a first-name reset for every mapped user without one."""
        changes = result.changes()
        covered = result.user_ids
        for user_id in self.mappings.user_ids():
            if user_id in covered:
                continue
            preferred = self.mappings.preferred_name(user_id)
            if preferred is None:
                continue
            changes[preferred] = first_name(preferred)
            log.info("no recent change for Discord user %s, will reset to '%s'", user_id, changes[preferred])
        return changes
