import asyncio
import json

import pytest
from conftest import SYNC_CHANNEL, FakeMessage

from core.authorization import AuthorizationService
from core.commands import CommandHandler, parse_resync_args, split_message
from core.config import ClearBehavior, PermissionAction, PermissionConfig
from core.nickname_sync import NicknameApplier
from core.reconciler import HistoryReconciler


@pytest.fixture
def build_handler(make_store, platform, everyone_permissions):
    def _build(mappings, permissions=None):
        store = make_store(mappings)
        handler = CommandHandler(
            mappings=store,
            auth=AuthorizationService(permissions or everyone_permissions),
            platform=platform,
            applier=NicknameApplier(store, platform, batch_delay=0),
            reconciler=HistoryReconciler(store, platform, ClearBehavior.RESET_TO_FIRST_NAME),
            sync_channel_id=SYNC_CHANNEL,
            resync_message_count=2000,
        )
        return handler, store

    return _build


def _send(handler, message):
    return asyncio.run(handler.handle(message))


def test_unknown_command_ignored(build_handler):
    handler, _ = build_handler({})
    message = FakeMessage("!dance")
    assert _send(handler, message) is False
    assert message.replies == []


def test_unauthorized_command_locked(build_handler):
    permissions = {PermissionAction.MAPPING_MANAGEMENT: PermissionConfig(allowed_user_ids={99})}
    handler, store = build_handler({}, permissions)
    message = FakeMessage("!map 5 Jane Doe", author_id=1)
    assert _send(handler, message) is True
    assert message.reactions == ["🔒"]
    assert store.resolve("Jane Doe") is None


def test_map_command(build_handler, platform):
    handler, store = build_handler({})
    platform.add_member(5, "jane")
    message = FakeMessage("!MAP 5 Jane   Doe")
    _send(handler, message)
    assert store.resolve("Jane Doe") == 5
    assert message.replies == ["✅ Mapped `Jane Doe` → <@5> (jane)"]
    assert json.loads(store.path.read_text(encoding="utf-8"))["Mappings"] == {"Jane Doe": 5}


def test_map_unknown_member_warns_but_stores(build_handler):
    handler, store = build_handler({})
    message = FakeMessage("!map 5 Jane Doe")
    _send(handler, message)
    assert store.resolve("Jane Doe") == 5
    assert message.replies[0].startswith("⚠️ Warning")
    assert message.replies[1] == "✅ Mapped `Jane Doe` → User ID: 5"


def test_map_usage_and_invalid_id(build_handler):
    handler, store = build_handler({})
    usage = FakeMessage("!map 5")
    _send(handler, usage)
    assert usage.replies[0].startswith("❌ Usage")

    invalid = FakeMessage("!map abc Jane")
    _send(handler, invalid)
    assert invalid.replies == ["❌ Invalid Discord user ID. Must be a numeric ID."]
    assert store.snapshot() == {}


def test_unmap_command(build_handler):
    handler, store = build_handler({"Jane Doe": 5})
    message = FakeMessage("!unmap Jane Doe")
    _send(handler, message)
    assert message.replies == ["✅ Removed mapping for `Jane Doe`"]

    again = FakeMessage("!unmap Jane Doe")
    _send(handler, again)
    assert again.replies == ["❌ No mapping found for `Jane Doe`"]


def test_listmaps(build_handler, platform):
    handler, _ = build_handler({"Zed": 2, "Amy Adams": 1})
    platform.add_member(1, "amy")
    message = FakeMessage("!listmaps")
    _send(handler, message)
    assert message.replies == ["**Current Mappings:**\n\n• `Amy Adams` → amy\n• `Zed` → ID: 2"]


def test_listmaps_empty(build_handler):
    handler, _ = build_handler({})
    message = FakeMessage("!listmaps")
    _send(handler, message)
    assert message.replies == ["No mappings configured."]


def test_reload_command(build_handler):
    handler, store = build_handler({"Jane": 1})
    store.path.write_text(json.dumps({"Mappings": {"Bob": 2}}), encoding="utf-8")
    message = FakeMessage("!reloadmappings")
    _send(handler, message)
    assert store.snapshot() == {"Bob": 2}
    assert message.replies == ["✅ Mappings reloaded successfully!"]


def test_help_command(build_handler):
    handler, _ = build_handler({})
    message = FakeMessage("!nicknamehelp")
    _send(handler, message)
    assert "!resync [count] [-reset]" in message.replies[0]
    assert "(default: 2000)" in message.replies[0]


def test_resync_outside_sync_channel(build_handler):
    handler, _ = build_handler({})
    message = FakeMessage("!resync", channel_id=55)
    _send(handler, message)
    assert message.replies == ["❌ This command can only be used in the nickname sync channel."]


def test_resync_applies_latest(build_handler, platform):
    handler, _ = build_handler({"Alice Smith": 1, "Bob Jones": 2})
    platform.add_member(1, "alice")
    platform.add_member(2, "bob")
    platform.load_history(
        SYNC_CHANNEL,
        [
            ("Bob Jones set the nickname for Alice Smith to Ally.", 20),
            ("Bob Jones set the nickname for Alice Smith to Al.", 10),
        ],
    )
    message = FakeMessage("!resync 50")
    _send(handler, message)
    assert platform.renames == [(1, "Ally")]
    assert message.replies[0] == "🔄 Searching last 50 messages for nickname changes..."
    assert message.replies[1] == "Found nicknames for 1 user(s). Applying..."
    assert "Successfully updated: 1" in message.replies[2]
    assert "Reset to first name" not in message.replies[2]


def test_resync_with_reset(build_handler, platform):
    handler, _ = build_handler({"Alice Smith": 1, "your": 2, "Bob Jones": 2})
    platform.add_member(1, "alice")
    platform.add_member(2, "bob")
    platform.load_history(SYNC_CHANNEL, [("Bob Jones set the nickname for Alice Smith to Ally.", 20)])
    message = FakeMessage("!resync -RESET")
    _send(handler, message)
    assert sorted(platform.renames) == [(1, "Ally"), (2, "Bob")]
    assert "Reset to first name: 1" in message.replies[-1]


def test_resync_nothing_found(build_handler, platform):
    handler, _ = build_handler({"Alice Smith": 1})
    message = FakeMessage("!resync")
    _send(handler, message)
    assert message.replies[-1] == "❌ No nickname changes to apply."


def test_resync_reports_errors(build_handler, platform):
    handler, _ = build_handler({"Alice Smith": 1})

    async def broken_history(*args):
        raise RuntimeError("gateway down")

    platform.fetch_history = broken_history
    message = FakeMessage("!resync")
    _send(handler, message)
    assert message.replies[-1] == "❌ Error during resync: gateway down"


def test_parse_resync_args():
    assert parse_resync_args([], 2000) == (2000, False)
    assert parse_resync_args(["500", "-reset"], 2000) == (500, True)
    assert parse_resync_args(["50000"], 2000) == (10000, False)
    assert parse_resync_args(["-5", "abc"], 2000) == (2000, False)


def test_split_message():
    text = "\n".join(["x" * 10] * 5)
    chunks = list(split_message(text, max_length=25))
    assert chunks == ["x" * 10 + "\n" + "x" * 10, "x" * 10 + "\n" + "x" * 10, "x" * 10]
    assert list(split_message("short")) == ["short"]
