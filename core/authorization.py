from __future__ import annotations

import logging
from typing import Dict, Mapping

from .config import PermissionAction, PermissionConfig, describe_permissions
from .platform import IncomingMessage

log = logging.getLogger(__name__)


class AuthorizationService:
    def __init__(self, permissions: Mapping[PermissionAction, PermissionConfig]) -> None:
        self._permissions: Dict[PermissionAction, PermissionConfig] = dict(permissions)
        log.info("authorization configured:")
        for line in describe_permissions(self._permissions):
            log.info("  %s", line)

    def is_authorized(self, message: IncomingMessage, action: PermissionAction) -> bool:
        config = self._permissions.get(action)
        if config is None:
            return False
        if config.allow_everyone:
            return True
        if message.author_id in config.allowed_user_ids:
            return True
        # DMs carry no roles; only explicit user ids count there
        if message.is_direct:
            return False
        return any(role_id in config.allowed_role_ids for role_id in message.role_ids)
