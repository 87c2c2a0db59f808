from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .parser import SENTINEL_NAME

log = logging.getLogger(__name__)

TEMPLATE_MAPPINGS: Dict[str, int] = {
    "John Smith": 123456789012345678,
    "Jane Doe": 987654321098765432,
}


class MappingPersistenceError(Exception):
    """Raised when the mapping file cannot be written."""


class UserMappingStore:
    """Facebook display name -> Discord user id, persisted as JSON.

    Entries live in an insertion-ordered dict; overwriting a name keeps its
    original position.  Every read and write goes through ``self._lock`` so a
    resync running alongside live events never observes a half-replaced map.
    """

    def __init__(self, path: Path, *, special_names: Iterable[str] = (SENTINEL_NAME,)) -> None:
        self.path = Path(path)
        self.special_names = {name.lower() for name in special_names}
        self._lock = threading.Lock()
        self._mappings: Dict[str, int] = {}
        self.reload()

    # ----- loading & saving -----
    def _read_file(self) -> Optional[Dict[str, int]]:
        if not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as exc:
            log.warning("failed to load mappings from %s, starting empty: %s", self.path, exc)
            return {}
        raw = payload.get("Mappings") if isinstance(payload, dict) else None
        if not isinstance(raw, dict):
            log.warning("mapping file %s has no 'Mappings' object, starting empty", self.path)
            return {}
        cleaned: Dict[str, int] = {}
        for name, value in raw.items():
            try:
                user_id = int(value)
            except (TypeError, ValueError):
                log.warning("skipping mapping '%s': invalid user id %r", name, value)
                continue
            if user_id < 0:
                log.warning("skipping mapping '%s': negative user id %s", name, user_id)
                continue
            cleaned[str(name)] = user_id
        return cleaned

    def _save(self) -> None:
        payload = {"Mappings": self._mappings}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(payload, ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
        except OSError as exc:
            raise MappingPersistenceError(f"failed to save mappings to {self.path}: {exc}") from exc

    def reload(self) -> None:
        loaded = self._read_file()
        with self._lock:
            if loaded is None:
                log.warning("no mapping file found, creating template at %s", self.path.resolve())
                self._mappings = dict(TEMPLATE_MAPPINGS)
                try:
                    self._save()
                except MappingPersistenceError as exc:
                    log.warning("%s", exc)
                else:
                    log.info("edit %s with real Facebook names and Discord user ids", self.path)
            else:
                self._mappings = loaded
                log.info("loaded %d user mapping(s)", len(loaded))

    # ----- lookups -----
    def resolve(self, facebook_name: str) -> Optional[int]:
        with self._lock:
            user_id = self._mappings.get(facebook_name)
            if user_id is not None:
                return user_id
            return self._resolve_by_first_name(facebook_name)

    def _resolve_by_first_name(self, name: str) -> Optional[int]:
        lowered = name.lower()
        prefix = lowered + " "
        matches = [
            (key, value)
            for key, value in self._mappings.items()
            if key.lower() == lowered or key.lower().startswith(prefix)
        ]
        if not matches:
            return None
        if len(matches) == 1:
            log.info("matched '%s' to '%s' by first name", name, matches[0][0])
            return matches[0][1]
        log.warning(
            "ambiguous first name '%s' matches %s; using '%s'",
            name,
            ", ".join(f"'{key}'" for key, _ in matches),
            matches[0][0],
        )
        return matches[0][1]

    def names_for(self, user_id: int) -> List[str]:
        with self._lock:
            return [name for name, value in self._mappings.items() if value == user_id]

    def preferred_name(self, user_id: int) -> Optional[str]:
        """Best display name for ``user_id``: the longest non-special name."""
        names = self.names_for(user_id)
        if not names:
            return None
        if len(names) == 1:
            return names[0]
        real_names = [name for name in names if name.lower() not in self.special_names]
        if not real_names:
            return names[0]
        preferred = max(real_names, key=len)
        log.debug(
            "user %s has multiple mappings, preferring '%s' over %s",
            user_id,
            preferred,
            ", ".join(f"'{name}'" for name in names if name != preferred),
        )
        return preferred

    def user_ids(self) -> List[int]:
        with self._lock:
            return list(dict.fromkeys(self._mappings.values()))

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._mappings)

    def __len__(self) -> int:
        with self._lock:
            return len(self._mappings)

    # ----- mutations -----
    def upsert(self, facebook_name: str, user_id: int) -> bool:
        with self._lock:
            is_new = facebook_name not in self._mappings
            self._mappings[facebook_name] = user_id
            self._save()
        log.info("%s mapping: '%s' -> %s", "added" if is_new else "updated", facebook_name, user_id)
        return is_new

    def remove(self, facebook_name: str) -> bool:
        with self._lock:
            if facebook_name not in self._mappings:
                return False
            del self._mappings[facebook_name]
            self._save()
        log.info("removed mapping for '%s'", facebook_name)
        return True
