from __future__ import annotations

import logging
import re
from typing import Optional

from .authorization import AuthorizationService
from .config import AutoRenameConfig, PermissionAction
from .platform import GuildPlatform, IncomingMessage

log = logging.getLogger(__name__)

MAX_CHANNEL_NAME_LENGTH = 100
FALLBACK_CHANNEL_NAME = "unnamed-chat"


def sanitize_channel_name(name: str) -> str:
    sanitized = re.sub(r"[^a-zA-Z0-9\-_]", "-", name)
    sanitized = re.sub(r"-+", "-", sanitized)
    sanitized = sanitized.strip("-").lower()
    if len(sanitized) > MAX_CHANNEL_NAME_LENGTH:
        sanitized = sanitized[:MAX_CHANNEL_NAME_LENGTH].rstrip("-")
    if not sanitized.strip():
        sanitized = FALLBACK_CHANNEL_NAME
    return sanitized


class ChannelRenameService:
    """Mirrors Messenger group renames onto configured Discord channels."""

    def __init__(
        self,
        config: AutoRenameConfig,
        platform: GuildPlatform,
        auth: Optional[AuthorizationService] = None,
    ) -> None:
        self.config = config
        self.platform = platform
        self.auth = auth
        if config.enabled:
            log.info("auto-rename enabled for %d channel(s)", len(config.channel_ids))
            log.info("authorization required: %s", config.require_authorization)

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def should_process(self, channel_id: int) -> bool:
        return self.config.enabled and channel_id in self.config.channel_ids

    def is_authorized(self, message: IncomingMessage) -> bool:
        if not self.config.require_authorization or self.auth is None:
            return True
        return self.auth.is_authorized(message, PermissionAction.CHANNEL_RENAME)

    async def rename(self, channel_id: int, new_name: str, triggered_by: str) -> bool:
        sanitized = sanitize_channel_name(new_name)
        current = self.platform.channel_name(channel_id)
        if current == sanitized:
            log.info("channel '%s' already has the correct name, skipping", current)
            return False
        try:
            result = await self.platform.rename_channel(channel_id, sanitized)
        except Exception as exc:
            log.exception("error renaming channel %s: %s", channel_id, exc)
            return False
        if not result.ok:
            log.warning("failed to rename channel %s: %s", channel_id, result.reason or result.status.value)
            return False
        log.info("renamed channel to '%s' (triggered by: %s)", sanitized, triggered_by)
        return True
