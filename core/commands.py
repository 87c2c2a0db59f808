from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional, Sequence

from .authorization import AuthorizationService
from .config import MAX_RESYNC_MESSAGE_COUNT, PermissionAction
from .mappings import MappingPersistenceError, UserMappingStore
from .nickname_sync import NicknameApplier
from .platform import GuildPlatform, IncomingMessage
from .reconciler import HistoryReconciler
from .router import REACTION_LOCKED

log = logging.getLogger(__name__)

COMMAND_PREFIX = "!"
RESYNC_COMMAND = "!resync"
RELOAD_COMMAND = "!reloadmappings"
HELP_COMMAND = "!nicknamehelp"
MAP_COMMAND = "!map"
UNMAP_COMMAND = "!unmap"
LIST_MAPS_COMMAND = "!listmaps"

RESET_FLAG = "-reset"
MAX_MESSAGE_LENGTH = 2000

REQUIRED_PERMISSIONS: Dict[str, PermissionAction] = {
    MAP_COMMAND: PermissionAction.MAPPING_MANAGEMENT,
    UNMAP_COMMAND: PermissionAction.MAPPING_MANAGEMENT,
    RELOAD_COMMAND: PermissionAction.MAPPING_MANAGEMENT,
    RESYNC_COMMAND: PermissionAction.MAPPING_MANAGEMENT,
    HELP_COMMAND: PermissionAction.INFO_COMMANDS,
    LIST_MAPS_COMMAND: PermissionAction.INFO_COMMANDS,
}


def split_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> Iterator[str]:
    """Split on line boundaries so each chunk fits in one Discord message."""
    chunk: List[str] = []
    length = 0
    for line in text.split("\n"):
        if chunk and length + len(line) + 1 > max_length:
            yield "\n".join(chunk)
            chunk = []
            length = 0
        chunk.append(line)
        length += len(line) + 1
    if chunk:
        yield "\n".join(chunk)


def parse_resync_args(args: Sequence[str], default_count: int):
    count = default_count
    reset = False
    for part in args:
        if part.lower() == RESET_FLAG:
            reset = True
        elif part.isdigit() and int(part) > 0:
            count = min(int(part), MAX_RESYNC_MESSAGE_COUNT)
    return count, reset


class CommandHandler:
    def __init__(
        self,
        *,
        mappings: UserMappingStore,
        auth: AuthorizationService,
        platform: GuildPlatform,
        applier: NicknameApplier,
        reconciler: HistoryReconciler,
        sync_channel_id: int,
        resync_message_count: int,
    ) -> None:
        self.mappings = mappings
        self.auth = auth
        self.platform = platform
        self.applier = applier
        self.reconciler = reconciler
        self.sync_channel_id = sync_channel_id
        self.resync_message_count = resync_message_count
        self._handlers = {
            RELOAD_COMMAND: self._reload,
            HELP_COMMAND: self._help,
            MAP_COMMAND: self._map,
            UNMAP_COMMAND: self._unmap,
            LIST_MAPS_COMMAND: self._list_maps,
            RESYNC_COMMAND: self._resync,
        }

    async def handle(self, message: IncomingMessage) -> bool:
        """Dispatch a ``!`` command; returns False for unknown commands."""
        parts = message.content.split()
        if not parts:
            return False
        command = parts[0].lower()
        handler = self._handlers.get(command)
        if handler is None:
            return False
        action = REQUIRED_PERMISSIONS[command]
        if not self.auth.is_authorized(message, action):
            log.warning("unauthorized %s command attempt by %s", action.value, message.author_name)
            await message.react(REACTION_LOCKED)
            return True
        await handler(message, parts)
        return True

    async def _reload(self, message: IncomingMessage, parts: List[str]) -> None:
        try:
            self.mappings.reload()
        except Exception as exc:
            log.exception("error reloading mappings")
            await message.reply(f"❌ Error reloading mappings: {exc}")
            return
        log.info("mappings reloaded by %s", message.author_name)
        await message.reply("✅ Mappings reloaded successfully!")

    async def _help(self, message: IncomingMessage, parts: List[str]) -> None:
        await message.reply(
            "**Nickname Sync Bot Commands**\n\n"
            "**Mapping Management:** *(Requires MappingManagement permission)*\n"
            f"`{MAP_COMMAND} <user_id> <facebook_name>` - Add/update a mapping\n"
            f"  Example: `{MAP_COMMAND} 123456789012345678 John Smith`\n"
            f"`{UNMAP_COMMAND} <facebook_name>` - Remove a mapping\n"
            f"  Example: `{UNMAP_COMMAND} John Smith`\n"
            f"`{RELOAD_COMMAND}` - Reload mappings from file\n"
            f"`{RESYNC_COMMAND} [count] [{RESET_FLAG}]` - Re-sync all nicknames from message history\n"
            f"  Example: `{RESYNC_COMMAND} 1000` (default: {self.resync_message_count})\n"
            f"  The {RESET_FLAG} flag will rename mapped (but not recently renamed) discord users "
            "to their first name from FB\n"
            "  Note: Can only be used in the nickname sync channel\n\n"
            "**Info Commands:**\n"
            f"`{LIST_MAPS_COMMAND}` - Show all current mappings\n"
            f"`{HELP_COMMAND}` - Show this help message\n\n"
            "**Automatic Features:**\n"
            "- Syncs nicknames from Facebook Messenger messages\n"
            "  Format: `<User> set the nickname for <Name> to <Nickname>.`\n"
            "- Auto-renames configured channels when Facebook group is renamed\n"
            "  Format: `<First Name> named the group <New Name>.`\n"
            "  *(Requires ChannelRename permission if RequireAuthorization is true)*"
        )

    async def _map(self, message: IncomingMessage, parts: List[str]) -> None:
        if len(parts) < 3:
            await message.reply(
                f"❌ Usage: `{MAP_COMMAND} <discord_user_id> <facebook_name>`\n"
                f"Example: `{MAP_COMMAND} 123456789012345678 John Smith`"
            )
            return
        if not parts[1].isdigit():
            await message.reply("❌ Invalid Discord user ID. Must be a numeric ID.")
            return
        user_id = int(parts[1])
        facebook_name = " ".join(parts[2:])

        member = None if message.is_direct else self.platform.get_member(user_id)
        if member is None and not message.is_direct:
            await message.reply(
                f"⚠️ Warning: User ID {user_id} not found in this server. Mapping will still be created."
            )
        try:
            self.mappings.upsert(facebook_name, user_id)
        except MappingPersistenceError as exc:
            log.error("%s", exc)
            await message.reply(f"❌ Mapping updated in memory but could not be saved: {exc}")
            return
        if member is not None:
            await message.reply(f"✅ Mapped `{facebook_name}` → <@{member.id}> ({member.name})")
        else:
            await message.reply(f"✅ Mapped `{facebook_name}` → User ID: {user_id}")

    async def _unmap(self, message: IncomingMessage, parts: List[str]) -> None:
        if len(parts) < 2:
            await message.reply(
                f"❌ Usage: `{UNMAP_COMMAND} <facebook_name>`\n"
                f"Example: `{UNMAP_COMMAND} John Smith`"
            )
            return
        facebook_name = " ".join(parts[1:])
        try:
            removed = self.mappings.remove(facebook_name)
        except MappingPersistenceError as exc:
            log.error("%s", exc)
            await message.reply(f"❌ Mapping removed in memory but could not be saved: {exc}")
            return
        if removed:
            await message.reply(f"✅ Removed mapping for `{facebook_name}`")
        else:
            await message.reply(f"❌ No mapping found for `{facebook_name}`")

    async def _list_maps(self, message: IncomingMessage, parts: List[str]) -> None:
        mappings = self.mappings.snapshot()
        if not mappings:
            await message.reply("No mappings configured.")
            return
        lines = ["**Current Mappings:**", ""]
        for facebook_name, user_id in sorted(mappings.items()):
            member = None if message.is_direct else self.platform.get_member(user_id)
            info = member.name if member is not None else f"ID: {user_id}"
            lines.append(f"• `{facebook_name}` → {info}")
        for chunk in split_message("\n".join(lines)):
            await message.reply(chunk)

    async def _resync(self, message: IncomingMessage, parts: List[str]) -> None:
        if message.channel_id != self.sync_channel_id:
            await message.reply("❌ This command can only be used in the nickname sync channel.")
            return
        count, reset = parse_resync_args(parts[1:], self.resync_message_count)
        reset_info = " (will reset mapped users with no recent nickname to first name)" if reset else ""
        await message.reply(f"🔄 Searching last {count} messages for nickname changes{reset_info}...")

        try:
            result = await self.reconciler.find_latest_changes(message.channel_id, count)
            changes: Dict[str, Optional[str]]
            if reset:
                changes = self.reconciler.reset_fill(result)
            else:
                changes = result.changes()

            if not changes:
                await message.reply("❌ No nickname changes to apply.")
                return

            await message.reply(f"Found nicknames for {len(changes)} user(s). Applying...")
            results = await self.applier.apply_batch(changes)
        except Exception as exc:
            log.exception("error during resync")
            await message.reply(f"❌ Error during resync: {exc}")
            return
        await message.reply(results.summary(include_reset=reset))
