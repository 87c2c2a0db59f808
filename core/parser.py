"""Turns bridge-generated Messenger notices into typed nickname/group events.

The Messenger bridge posts plain sentences such as::

    Alice set the nickname for Bob Smith to Bobby.
    Alice set your nickname to Captain.
    Alice cleared her own nickname.
    Alice named the group Weekend Plans.

Each family of sentences is an ordered list of matchers; the first one that
matches decides the event.  Clear sentences are checked before set sentences,
and both before group renames.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

# the bridge addresses the account that set it up in second person
SENTINEL_NAME = "your"


@dataclass(frozen=True)
class NicknameSet:
    actor: str
    target: str
    nickname: str


@dataclass(frozen=True)
class NicknameCleared:
    actor: Optional[str]
    target: Optional[str]

    @property
    def target_known(self) -> bool:
        return self.target is not None


@dataclass(frozen=True)
class GroupRenamed:
    actor: str
    name: str


ParsedEvent = Union[NicknameSet, NicknameCleared, GroupRenamed]

_Matcher = Tuple[str, "re.Pattern[str]", Callable[["re.Match[str]"], ParsedEvent]]

_PRONOUN = r"(?:his|her|their)"

_CLEAR_MATCHERS: List[_Matcher] = [
    (
        "clear_named",
        re.compile(r"^(?:You|(?P<actor>.+?)) cleared the nickname for (?P<target>.+?)\.$"),
        lambda m: NicknameCleared(m.group("actor"), m.group("target")),
    ),
    (
        "clear_sentinel",
        re.compile(r"^(?:You|(?P<actor>.+?)) cleared your nickname\.$"),
        lambda m: NicknameCleared(m.group("actor"), SENTINEL_NAME),
    ),
    (
        "clear_unknown",
        re.compile(rf"^You cleared (?:your|{_PRONOUN}) own nickname\.$"),
        lambda m: NicknameCleared(None, None),
    ),
    (
        "clear_self",
        re.compile(rf"^(?P<actor>.+?) cleared {_PRONOUN} own nickname\.$"),
        lambda m: NicknameCleared(m.group("actor"), m.group("actor")),
    ),
]

_SET_MATCHERS: List[_Matcher] = [
    (
        "set_named",
        re.compile(r"^(?P<actor>.+?) set the nickname for (?P<target>.+?) to (?P<nickname>.+?)\.$"),
        lambda m: NicknameSet(m.group("actor"), m.group("target"), m.group("nickname")),
    ),
    (
        "set_sentinel",
        re.compile(r"^(?P<actor>.+?) set your nickname to (?P<nickname>.+?)\.$"),
        lambda m: NicknameSet(m.group("actor"), SENTINEL_NAME, m.group("nickname")),
    ),
    (
        "set_self",
        re.compile(rf"^(?P<actor>.+?) set {_PRONOUN} own nickname to (?P<nickname>.+?)\.$"),
        lambda m: NicknameSet(m.group("actor"), m.group("actor"), m.group("nickname")),
    ),
]

_RENAME_MATCHERS: List[_Matcher] = [
    (
        "group_renamed",
        re.compile(r"^(?P<actor>.+?) named the group (?P<name>.+?)\.$"),
        lambda m: GroupRenamed(m.group("actor"), m.group("name")),
    ),
]


def _first_match(matchers: List[_Matcher], content: str) -> Optional[ParsedEvent]:
    for _name, pattern, build in matchers:
        match = pattern.fullmatch(content)
        if match:
            return build(match)
    return None


def parse_clear(content: str) -> Optional[NicknameCleared]:
    return _first_match(_CLEAR_MATCHERS, content or "")  # type: ignore[return-value]


def parse_set(content: str) -> Optional[NicknameSet]:
    return _first_match(_SET_MATCHERS, content or "")  # type: ignore[return-value]


def parse_group_rename(content: str) -> Optional[GroupRenamed]:
    return _first_match(_RENAME_MATCHERS, content or "")  # type: ignore[return-value]


def interpret(content: str) -> Optional[ParsedEvent]:
    """Return the event described by ``content`` or ``None`` when nothing matches."""
    for parse in (parse_clear, parse_set, parse_group_rename):
        event = parse(content)
        if event is not None:
            return event
    return None


def first_name(name: str) -> str:
    parts = name.split()
    return parts[0] if parts else name
