"""JSON-backed stores for loaded tables and user profiles.

Both stores work purely in memory when constructed without a path, which is how
the tests and embedding callers use them.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

from merchant_match.contracts import build_config_document
from merchant_match.errors import InvalidConfig
from merchant_match.keys import normalize_key
from merchant_match.models import ColumnMapping, Table, UserProfile
from merchant_match.resources import atomic_write_bytes

logger = logging.getLogger(__name__)


def read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise InvalidConfig(f"Could not read {path}: {exc}") from exc


def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
    atomic_write_bytes(path, text.encode("utf-8"))


class TableStore:
    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self._tables: list[Table] = []
        if path is not None and path.exists():
            payload = read_json(path)
            if not isinstance(payload, list):
                raise InvalidConfig(f"{path} must hold a JSON array of tables")
            try:
                self._tables = [Table.from_dict(entry) for entry in payload]
            except (KeyError, TypeError, AttributeError) as exc:
                raise InvalidConfig(f"{path} holds a malformed table entry: {exc}") from exc

    def save(self) -> None:
        if self.path is not None:
            write_json(self.path, [table.to_dict() for table in self._tables])

    def tables(self) -> list[Table]:
        return list(self._tables)

    def get(self, name: str) -> Table | None:
        for table in self._tables:
            if table.name == name:
                return table
        return None

    def add(self, table: Table) -> Table:
        if self.get(table.name) is not None:
            raise ValueError(f"A table named '{table.name}' is already loaded. Unload it first.")
        self._tables.append(table)
        self.save()
        return table

    def put(self, table: Table) -> Table:
        """Insert or replace in place, keeping load order."""
        for position, existing in enumerate(self._tables):
            if existing.name == table.name:
                self._tables[position] = table
                break
        else:
            self._tables.append(table)
        self.save()
        return table

    def remove(self, name: str) -> bool:
        before = len(self._tables)
        self._tables = [table for table in self._tables if table.name != name]
        removed = len(self._tables) != before
        if removed:
            self.save()
        return removed


class ProfileStore:
    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self._profiles: dict[str, UserProfile] = {}
        self.active_id: Optional[str] = None
        if path is not None and path.exists():
            profiles, active_id = self._validate(read_json(path), source=str(path))
            self._profiles = {profile.id: profile for profile in profiles}
            self.active_id = active_id if active_id in self._profiles else None

    @staticmethod
    def _validate(payload: Any, source: str) -> tuple[list[UserProfile], Optional[str]]:
        if not isinstance(payload, dict):
            raise InvalidConfig(f"{source}: expected a JSON object")
        entries = payload.get("profiles")
        if not isinstance(entries, list):
            raise InvalidConfig(f"{source}: 'profiles' must be present and be an array")
        try:
            profiles = [UserProfile.from_dict(entry) for entry in entries]
        except (TypeError, ValueError) as exc:
            raise InvalidConfig(f"{source}: {exc}") from exc
        active_id = payload.get("activeProfileId")
        if active_id is not None and not isinstance(active_id, str):
            raise InvalidConfig(f"{source}: 'activeProfileId' must be a string or null")
        return profiles, active_id or None

    def save(self) -> None:
        if self.path is not None:
            write_json(
                self.path,
                {"activeProfileId": self.active_id, "profiles": [profile.to_dict() for profile in self._profiles.values()]},
            )

    def profiles(self) -> list[UserProfile]:
        return list(self._profiles.values())

    def get(self, profile_id: str) -> UserProfile | None:
        return self._profiles.get(profile_id)

    def active(self) -> UserProfile | None:
        if self.active_id is None:
            return None
        return self._profiles.get(self.active_id)

    def create(self, name: str, default_held_by: str = "", default_pos_ecom: str = "") -> UserProfile:
        base = normalize_key(name) or "profile"
        profile_id = base
        suffix = 2
        while profile_id in self._profiles:
            profile_id = f"{base}{suffix}"
            suffix += 1
        profile = UserProfile(
            id=profile_id,
            name=name,
            default_held_by=default_held_by,
            default_pos_ecom=default_pos_ecom,
        )
        self._profiles[profile_id] = profile
        if self.active_id is None:
            self.active_id = profile_id
        self.save()
        return profile

    def put(self, profile: UserProfile) -> None:
        self._profiles[profile.id] = profile
        self.save()

    def use(self, profile_id: str) -> UserProfile:
        profile = self._profiles.get(profile_id)
        if profile is None:
            known = ", ".join(sorted(self._profiles)) or "none"
            raise KeyError(f"No profile '{profile_id}'. Known profiles: {known}")
        self.active_id = profile_id
        self.save()
        return profile

    def save_mapping(self, profile_id: str, table_name: str, mapping: ColumnMapping) -> None:
        profile = self._profiles.get(profile_id)
        if profile is None:
            raise KeyError(f"No profile '{profile_id}'")
        profile.set_column_mapping(table_name, mapping)
        self.save()

    def export_config(self) -> dict[str, Any]:
        return build_config_document(self.active_id, [profile.to_dict() for profile in self._profiles.values()])

    def import_config(self, payload: Any) -> list[UserProfile]:
        """Validate the whole document first; nothing is applied if any entry is bad."""
        profiles, active_id = self._validate(payload, source="config import")
        for profile in profiles:
            self._profiles[profile.id] = profile
        if active_id and active_id in self._profiles:
            self.active_id = active_id
        self.save()
        logger.info("Imported %d profile(s)", len(profiles))
        return profiles
