import logging
from typing import List, Optional, Set

import discord
from discord.ext import commands

from core.authorization import AuthorizationService
from core.channel_rename import ChannelRenameService
from core.commands import COMMAND_PREFIX, CommandHandler
from core.config import Settings
from core.mappings import UserMappingStore
from core.nickname_sync import NicknameApplier
from core.platform import HistoryMessage, MemberInfo, RenameResult
from core.reconciler import HistoryReconciler
from core.router import LiveEventRouter

log = logging.getLogger(__name__)


class DiscordGuildPlatform:
    """GuildPlatform backed by a live discord.py client.

    Member lookups go through the guild that owns the nickname sync channel;
    channel operations resolve whatever channel id they are given.
    """

    def __init__(self, bot: commands.Bot, home_channel_id: int):
        self.bot = bot
        self.home_channel_id = home_channel_id

    @property
    def guild(self) -> Optional[discord.Guild]:
        channel = self.bot.get_channel(self.home_channel_id)
        return getattr(channel, "guild", None)

    def _member(self, user_id: int) -> Optional[discord.Member]:
        guild = self.guild
        return guild.get_member(user_id) if guild else None

    def get_member(self, user_id: int) -> Optional[MemberInfo]:
        member = self._member(user_id)
        if member is None:
            return None
        return MemberInfo(id=member.id, name=member.name)

    def is_owner(self, user_id: int) -> bool:
        guild = self.guild
        return guild is not None and guild.owner_id == user_id

    async def rename_member(self, user_id: int, nickname: Optional[str]) -> RenameResult:
        member = self._member(user_id)
        if member is None:
            return RenameResult.failure(f"user {user_id} not in guild")
        try:
            await member.edit(nick=nickname)
        except discord.Forbidden as exc:
            return RenameResult.denied(str(exc))
        except discord.HTTPException as exc:
            return RenameResult.failure(str(exc))
        return RenameResult.success()

    async def send_direct_message(self, user_id: int, text: str) -> bool:
        member = self._member(user_id)
        if member is None:
            return False
        try:
            await member.send(text)
        except discord.Forbidden:
            return False
        except discord.HTTPException as exc:
            log.warning("failed to DM %s: %s", user_id, exc)
            return False
        return True

    def channel_name(self, channel_id: int) -> Optional[str]:
        channel = self.bot.get_channel(channel_id)
        return getattr(channel, "name", None)

    async def rename_channel(self, channel_id: int, name: str) -> RenameResult:
        channel = self.bot.get_channel(channel_id)
        if not isinstance(channel, discord.TextChannel):
            return RenameResult.failure("not a text channel")
        try:
            await channel.edit(name=name)
        except discord.Forbidden as exc:
            return RenameResult.denied(str(exc))
        except discord.HTTPException as exc:
            return RenameResult.failure(str(exc))
        return RenameResult.success()

    async def fetch_history(
        self, channel_id: int, before_message_id: Optional[int], limit: int
    ) -> List[HistoryMessage]:
        channel = self.bot.get_channel(channel_id)
        if not isinstance(channel, discord.abc.Messageable):
            return []
        before = discord.Object(id=before_message_id) if before_message_id else None
        messages: List[HistoryMessage] = []
        async for message in channel.history(limit=limit, before=before):
            messages.append(
                HistoryMessage(
                    text=message.content or "",
                    author_name=message.author.display_name,
                    timestamp=message.created_at,
                    message_id=message.id,
                )
            )
        return messages


class DiscordIncomingMessage:
    def __init__(self, message: discord.Message):
        self.message = message
        self.content: str = message.content or ""
        self.channel_id: int = message.channel.id
        self.author_id: int = message.author.id
        self.author_name: str = message.author.name
        self.is_direct: bool = message.guild is None
        roles = getattr(message.author, "roles", None) or []
        self.role_ids: Set[int] = {role.id for role in roles}

    async def react(self, emoji: str) -> None:
        try:
            await self.message.add_reaction(emoji)
        except discord.HTTPException as exc:
            log.warning("failed to react to message %s: %s", self.message.id, exc)

    async def reply(self, text: str) -> None:
        await self.message.channel.send(text)


class DiscordTransport(commands.Bot):
    def __init__(self, settings: Settings, mappings: UserMappingStore):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        super().__init__(command_prefix=COMMAND_PREFIX, intents=intents, help_command=None)
        self.settings = settings
        self.mappings = mappings
        self.platform = DiscordGuildPlatform(self, settings.nickname_sync_channel_id)

        auth = AuthorizationService(settings.permissions)
        applier = NicknameApplier(mappings, self.platform)
        reconciler = HistoryReconciler(mappings, self.platform, settings.clear_behavior)
        renamer = ChannelRenameService(settings.auto_rename, self.platform, auth)
        self.router = LiveEventRouter(
            sync_channel_id=settings.nickname_sync_channel_id,
            mappings=mappings,
            applier=applier,
            reconciler=reconciler,
            renamer=renamer,
        )
        self.command_handler = CommandHandler(
            mappings=mappings,
            auth=auth,
            platform=self.platform,
            applier=applier,
            reconciler=reconciler,
            sync_channel_id=settings.nickname_sync_channel_id,
            resync_message_count=settings.resync_message_count,
        )

    async def on_ready(self):
        log.info("connected as %s", self.user)
        log.info("monitoring channel id: %s", self.settings.nickname_sync_channel_id)
        for guild in self.guilds:
            log.info("downloading members for guild: %s", guild.name)
            await guild.chunk()
            log.info("  total members: %d", guild.member_count or len(guild.members))
        log.info("bot is ready")

    async def on_message(self, message: discord.Message):
        if not message or not message.content:
            return
        if self.user and message.author.id == self.user.id:
            return
        incoming = DiscordIncomingMessage(message)
        try:
            if incoming.content.startswith(COMMAND_PREFIX):
                await self.command_handler.handle(incoming)
                return
            await self.router.handle(incoming)
        except Exception as exc:
            log.exception("error handling message %s: %s", message.id, exc)


async def run_discord_bot(settings: Settings, mappings: UserMappingStore):
    bot = DiscordTransport(settings, mappings)
    try:
        await bot.start(settings.bot_token)
    finally:
        await bot.close()
