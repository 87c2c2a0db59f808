from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from .mappings import UserMappingStore
from .parser import first_name
from .platform import GuildPlatform, MemberInfo, RenameStatus

log = logging.getLogger(__name__)

MAX_NICKNAME_LENGTH = 32
BATCH_DELAY_SECONDS = 0.1


class ApplyOutcome(enum.Enum):
    APPLIED = "applied"
    NOT_MAPPED = "not_mapped"
    NOT_PRESENT = "not_present"
    OWNER_REMINDED = "owner_reminded"
    PERMISSION_DENIED = "permission_denied"
    FAILED = "failed"


@dataclass
class ResyncResults:
    success: int = 0
    not_mapped: int = 0
    errors: int = 0
    reset_to_first_name: int = 0
    owner_reminders: int = 0

    def summary(self, *, include_reset: bool = False) -> str:
        lines = [
            "✅ Resync complete!",
            f"• Successfully updated: {self.success}",
            f"• Not mapped: {self.not_mapped}",
            f"• Errors: {self.errors}",
        ]
        if self.owner_reminders:
            lines.append(f"• Owner reminders sent: {self.owner_reminders}")
        if include_reset:
            lines.append(f"• Reset to first name: {self.reset_to_first_name}")
        return "\n".join(lines)


def truncate_nickname(nickname: Optional[str]) -> Optional[str]:
    if nickname is None or len(nickname) <= MAX_NICKNAME_LENGTH:
        return nickname
    truncated = nickname[:MAX_NICKNAME_LENGTH]
    log.info("nickname '%s' truncated to '%s' (%d char limit)", nickname, truncated, MAX_NICKNAME_LENGTH)
    return truncated


def owner_reminder_text(nickname: Optional[str]) -> str:
    if nickname is None:
        return (
            "**Nickname Sync Reminder**\n\n"
            "Your nickname was cleared in the Facebook group chat. "
            "As the server owner, I cannot change your Discord nickname automatically.\n\n"
            "Please manually clear your nickname in the server if desired."
        )
    return (
        "**Nickname Sync Reminder**\n\n"
        f"Your nickname was changed to **{nickname}** in the Facebook group chat. "
        "As the server owner, I cannot change your Discord nickname automatically.\n\n"
        f"Please manually update your nickname to: `{nickname}`"
    )


class NicknameApplier:
    """Resolves Facebook names and pushes nicknames onto guild members."""

    def __init__(
        self,
        mappings: UserMappingStore,
        platform: GuildPlatform,
        *,
        batch_delay: float = BATCH_DELAY_SECONDS,
    ) -> None:
        self.mappings = mappings
        self.platform = platform
        self.batch_delay = batch_delay

    async def apply(self, facebook_name: str, nickname: Optional[str]) -> ApplyOutcome:
        outcome, _ = await self._apply(facebook_name, nickname)
        return outcome

    async def _apply(self, facebook_name: str, nickname: Optional[str]):
        user_id = self.mappings.resolve(facebook_name)
        if user_id is None:
            log.warning("no mapping found for Facebook name '%s'", facebook_name)
            return ApplyOutcome.NOT_MAPPED, nickname
        member = self.platform.get_member(user_id)
        if member is None:
            log.warning("user id %s not found in guild", user_id)
            return ApplyOutcome.NOT_PRESENT, nickname
        nickname = truncate_nickname(nickname)
        return await self.apply_to_member(member, nickname), nickname

    async def apply_to_member(self, member: MemberInfo, nickname: Optional[str]) -> ApplyOutcome:
        try:
            result = await self.platform.rename_member(member.id, nickname)
        except Exception as exc:
            log.exception("error changing nickname for %s: %s", member.name, exc)
            return ApplyOutcome.FAILED

        if result.status is RenameStatus.OK:
            log.info("changed %s's nickname to '%s'", member.name, nickname if nickname is not None else "(cleared)")
            return ApplyOutcome.APPLIED
        if result.status is RenameStatus.PERMISSION_DENIED:
            if self.platform.is_owner(member.id):
                log.info("cannot change server owner's (%s) nickname, sending DM reminder", member.name)
                await self._remind_owner(member, nickname)
                return ApplyOutcome.OWNER_REMINDED
            log.warning("no permission to change %s's nickname", member.name)
            return ApplyOutcome.PERMISSION_DENIED
        log.warning("error changing nickname for %s: %s", member.name, result.reason or "unknown error")
        return ApplyOutcome.FAILED

    async def _remind_owner(self, member: MemberInfo, nickname: Optional[str]) -> None:
        try:
            delivered = await self.platform.send_direct_message(member.id, owner_reminder_text(nickname))
        except Exception as exc:
            log.warning("error sending DM to server owner: %s", exc)
            return
        if delivered:
            log.info("sent DM reminder to server owner")
        else:
            log.warning("cannot DM server owner; they may have DMs disabled")

    async def apply_batch(self, changes: Mapping[str, Optional[str]]) -> ResyncResults:
        results = ResyncResults()
        for index, (facebook_name, nickname) in enumerate(changes.items()):
            if index and self.batch_delay:
                await asyncio.sleep(self.batch_delay)
            outcome, applied = await self._apply(facebook_name, nickname)
            if outcome is ApplyOutcome.APPLIED:
                results.success += 1
                if applied is not None and applied == first_name(facebook_name):
                    results.reset_to_first_name += 1
            elif outcome in (ApplyOutcome.NOT_MAPPED, ApplyOutcome.NOT_PRESENT):
                results.not_mapped += 1
            elif outcome is ApplyOutcome.OWNER_REMINDED:
                results.owner_reminders += 1
            else:
                results.errors += 1
        return results
