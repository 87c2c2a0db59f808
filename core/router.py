from __future__ import annotations

import enum
import logging
from typing import Optional

from .channel_rename import ChannelRenameService
from .config import ClearBehavior
from .mappings import UserMappingStore
from .nickname_sync import ApplyOutcome, NicknameApplier
from .parser import GroupRenamed, NicknameCleared, NicknameSet, interpret
from .platform import IncomingMessage
from .reconciler import HistoryReconciler

log = logging.getLogger(__name__)

REACTION_OK = "✅"
REACTION_FAILED = "❌"
REACTION_UNKNOWN = "❓"
REACTION_FORBIDDEN = "⛔"
REACTION_LOCKED = "🔒"

_OUTCOME_REACTIONS = {
    ApplyOutcome.APPLIED: REACTION_OK,
    ApplyOutcome.NOT_MAPPED: REACTION_UNKNOWN,
    ApplyOutcome.NOT_PRESENT: REACTION_FAILED,
    ApplyOutcome.PERMISSION_DENIED: REACTION_FORBIDDEN,
    ApplyOutcome.FAILED: REACTION_FAILED,
}


class RouteOutcome(enum.Enum):
    IGNORED = "ignored"
    CLEAR_IGNORED = "clear_ignored"
    UNKNOWN_TARGET = "unknown_target"
    NICKNAME_APPLIED = "nickname_applied"
    NICKNAME_NOT_APPLIED = "nickname_not_applied"
    CHANNEL_RENAMED = "channel_renamed"
    CHANNEL_NOT_RENAMED = "channel_not_renamed"
    UNAUTHORIZED = "unauthorized"


class LiveEventRouter:
    def __init__(
        self,
        *,
        sync_channel_id: int,
        mappings: UserMappingStore,
        applier: NicknameApplier,
        reconciler: HistoryReconciler,
        renamer: ChannelRenameService,
    ) -> None:
        self.sync_channel_id = sync_channel_id
        self.mappings = mappings
        self.applier = applier
        self.reconciler = reconciler
        self.renamer = renamer

    @property
    def clear_behavior(self) -> ClearBehavior:
        return self.reconciler.clear_behavior

    async def handle(self, message: IncomingMessage) -> RouteOutcome:
        event = interpret(message.content)
        if event is None:
            return RouteOutcome.IGNORED
        outcome = RouteOutcome.IGNORED
        if isinstance(event, GroupRenamed) and self.renamer.should_process(message.channel_id):
            outcome = await self._handle_group_rename(message, event)
        if message.channel_id == self.sync_channel_id:
            if isinstance(event, NicknameSet):
                outcome = await self._handle_set(message, event)
            elif isinstance(event, NicknameCleared):
                outcome = await self._handle_clear(message, event)
        return outcome

    async def _handle_group_rename(self, message: IncomingMessage, event: GroupRenamed) -> RouteOutcome:
        log.info("channel rename detected: '%s' renamed to '%s'", event.actor, event.name)
        if not self.renamer.is_authorized(message):
            log.warning("unauthorized rename attempt by %s", message.author_name)
            await message.react(REACTION_LOCKED)
            return RouteOutcome.UNAUTHORIZED
        renamed = await self.renamer.rename(message.channel_id, event.name, f"{event.actor} via Facebook")
        await message.react(REACTION_OK if renamed else REACTION_FAILED)
        return RouteOutcome.CHANNEL_RENAMED if renamed else RouteOutcome.CHANNEL_NOT_RENAMED

    async def _handle_set(self, message: IncomingMessage, event: NicknameSet) -> RouteOutcome:
        log.info("nickname change detected: '%s' -> '%s'", event.target, event.nickname)
        return await self._apply(message, event.target, event.nickname)

    async def _handle_clear(self, message: IncomingMessage, event: NicknameCleared) -> RouteOutcome:
        if self.clear_behavior is ClearBehavior.DO_NOTHING:
            log.info("nickname clear ignored (behavior set to DoNothing)")
            return RouteOutcome.CLEAR_IGNORED
        if event.target is None:
            log.warning("cannot determine target for '%s'", message.content)
            await message.react(REACTION_UNKNOWN)
            return RouteOutcome.UNKNOWN_TARGET
        log.info("nickname clear detected for '%s'", event.target)
        user_id = self.mappings.resolve(event.target)
        nickname: Optional[str] = None
        if user_id is not None:
            nickname = self.reconciler.desired_for_clear(event.target, user_id)
        return await self._apply(message, event.target, nickname)

    async def _apply(self, message: IncomingMessage, target: str, nickname: Optional[str]) -> RouteOutcome:
        outcome = await self.applier.apply(target, nickname)
        reaction = _OUTCOME_REACTIONS.get(outcome)
        if reaction:
            await message.react(reaction)
        if outcome is ApplyOutcome.APPLIED:
            return RouteOutcome.NICKNAME_APPLIED
        return RouteOutcome.NICKNAME_NOT_APPLIED
