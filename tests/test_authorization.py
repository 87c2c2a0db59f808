from conftest import FakeMessage

from core.authorization import AuthorizationService
from core.config import PermissionAction, PermissionConfig


def _service():
    return AuthorizationService(
        {
            PermissionAction.MAPPING_MANAGEMENT: PermissionConfig(
                allowed_role_ids={10}, allowed_user_ids={20}
            ),
            PermissionAction.INFO_COMMANDS: PermissionConfig(allow_everyone=True),
        }
    )


def test_allow_everyone():
    assert _service().is_authorized(FakeMessage("!listmaps", author_id=1), PermissionAction.INFO_COMMANDS)


def test_unconfigured_action_denied():
    assert not _service().is_authorized(FakeMessage("x", author_id=20), PermissionAction.CHANNEL_RENAME)


def test_allowed_user():
    assert _service().is_authorized(FakeMessage("x", author_id=20), PermissionAction.MAPPING_MANAGEMENT)


def test_allowed_role_in_guild():
    message = FakeMessage("x", author_id=1, role_ids={3, 10})
    assert _service().is_authorized(message, PermissionAction.MAPPING_MANAGEMENT)


def test_roles_ignored_in_direct_messages():
    message = FakeMessage("x", author_id=1, role_ids={10}, is_direct=True)
    assert not _service().is_authorized(message, PermissionAction.MAPPING_MANAGEMENT)
    direct_user = FakeMessage("x", author_id=20, is_direct=True)
    assert _service().is_authorized(direct_user, PermissionAction.MAPPING_MANAGEMENT)


def test_no_matching_role():
    message = FakeMessage("x", author_id=1, role_ids={3})
    assert not _service().is_authorized(message, PermissionAction.MAPPING_MANAGEMENT)
