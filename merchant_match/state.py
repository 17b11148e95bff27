"""Application state passed explicitly into every operation.

One ``AppState`` owns the stores of a workspace directory and the per-resource
update locks. Nothing here is process-global.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from merchant_match.flagging import FlagStore
from merchant_match.index import TableIndex
from merchant_match.manual_entry import ManualEntryBook
from merchant_match.models import UserProfile
from merchant_match.reconcile import RecordReconciler
from merchant_match.resources import PermissionPrompt, ResourceHandleStore, ResourceLocks
from merchant_match.storage import ProfileStore, TableStore
from merchant_match.updater import SpreadsheetUpdater

WORKSPACE_ENV = "MERCHANT_MATCH_HOME"
DEFAULT_WORKSPACE = ".merchant-match"

TABLES_FILE = "tables.json"
PROFILES_FILE = "profiles.json"
HANDLES_FILE = "handles.json"
FLAGGED_FILE = "flagged.json"


def resolve_workspace(explicit: Optional[str | Path] = None) -> Path:
    if explicit:
        return Path(explicit).expanduser()
    from_env = os.environ.get(WORKSPACE_ENV)
    if from_env:
        return Path(from_env).expanduser()
    return Path.cwd() / DEFAULT_WORKSPACE


@dataclass
class AppState:
    tables: TableStore = field(default_factory=TableStore)
    profiles: ProfileStore = field(default_factory=ProfileStore)
    handles: ResourceHandleStore = field(default_factory=ResourceHandleStore)
    flags: FlagStore = field(default_factory=FlagStore)
    locks: ResourceLocks = field(default_factory=ResourceLocks)
    workspace: Optional[Path] = None

    @classmethod
    def open(cls, workspace: Path, prompt: Optional[PermissionPrompt] = None) -> AppState:
        workspace.mkdir(parents=True, exist_ok=True)
        return cls(
            tables=TableStore(workspace / TABLES_FILE),
            profiles=ProfileStore(workspace / PROFILES_FILE),
            handles=ResourceHandleStore(workspace / HANDLES_FILE, prompt=prompt),
            flags=FlagStore(workspace / FLAGGED_FILE),
            workspace=workspace,
        )

    @property
    def profile(self) -> UserProfile | None:
        return self.profiles.active()

    def index(self) -> TableIndex:
        return TableIndex(self.tables.tables(), profile=self.profile)

    def reconciler(self, index: Optional[TableIndex] = None) -> RecordReconciler:
        return RecordReconciler(index or self.index(), profile=self.profile)

    def updater(self) -> SpreadsheetUpdater:
        return SpreadsheetUpdater(self.handles, locks=self.locks, profile=self.profile)

    def manual_entries(self) -> ManualEntryBook:
        return ManualEntryBook(self.tables)
