"""Durable handles to the external spreadsheets an update writes into."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional, Protocol

from merchant_match.errors import InvalidConfig, ResourceUnavailable, WriteError
from merchant_match.models import ResourceKind

logger = logging.getLogger(__name__)

PermissionPrompt = Callable[["FileResourceHandle"], bool]


class ResourceHandle(Protocol):
    """Capability the updater needs: identity, permission check, whole-file read and replace."""

    @property
    def name(self) -> str: ...

    @property
    def identity(self) -> str: ...

    def has_permission(self) -> bool: ...

    def request_permission(self) -> bool: ...

    def read_bytes(self) -> bytes: ...

    def write_bytes(self, data: bytes) -> None: ...


def lock_file_for(path: Path) -> Path:
    """Owner file Excel and LibreOffice keep next to a workbook while it is open."""
    return path.with_name(f"~${path.name}")


def atomic_write_bytes(path: Path, data: bytes) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=path.suffix, dir=str(path.parent))
    temp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(temp_path, path)
    finally:
        if temp_path.exists():
            temp_path.unlink()


class FileResourceHandle:
    def __init__(self, path: Path | str, prompt: Optional[PermissionPrompt] = None) -> None:
        self.path = Path(path).expanduser()
        self.prompt = prompt

    def __repr__(self) -> str:
        return f"FileResourceHandle({str(self.path)!r})"

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def identity(self) -> str:
        return str(self.path.resolve())

    def has_permission(self) -> bool:
        # A missing file is reported by read_bytes, so check the directory instead.
        target = self.path if self.path.exists() else self.path.parent
        return os.access(target, os.R_OK | os.W_OK)

    def request_permission(self) -> bool:
        """Ask the user once, then re-check. Without a prompt there is nobody to ask."""
        if self.prompt is None:
            return False
        if not self.prompt(self):
            return False
        return self.has_permission()

    def read_bytes(self) -> bytes:
        if lock_file_for(self.path).exists():
            raise ResourceUnavailable(
                f"{self.name} is open in another program. Close it and try again.",
                resource_name=self.name,
            )
        try:
            return self.path.read_bytes()
        except FileNotFoundError as exc:
            raise ResourceUnavailable(
                f"{self.name} was moved or deleted. Link the file again.",
                resource_name=self.name,
            ) from exc
        except OSError as exc:
            raise ResourceUnavailable(f"Could not read {self.name}: {exc}", resource_name=self.name) from exc

    def write_bytes(self, data: bytes) -> None:
        try:
            atomic_write_bytes(self.path, data)
        except OSError as exc:
            raise WriteError(f"Could not write {self.name}: {exc}", resource_name=self.name) from exc


class ResourceHandleStore:
    """Named handles per resource kind, persisted to ``handles.json`` when a path is given."""

    def __init__(self, path: Optional[Path] = None, prompt: Optional[PermissionPrompt] = None) -> None:
        self.path = path
        self.prompt = prompt
        self._handles: dict[ResourceKind, ResourceHandle] = {}
        if path is not None and path.exists():
            self._load(path)

    def _load(self, path: Path) -> None:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise InvalidConfig(f"Could not read linked files from {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise InvalidConfig(f"{path} must hold a JSON object of kind -> file path")
        for kind, target in payload.items():
            try:
                resource_kind = ResourceKind.parse(kind)
            except ValueError as exc:
                raise InvalidConfig(f"{path}: {exc}") from exc
            self._handles[resource_kind] = FileResourceHandle(str(target), prompt=self.prompt)

    def _save(self) -> None:
        if self.path is None:
            return
        payload = {
            kind.value: str(handle.path)
            for kind, handle in self._handles.items()
            if isinstance(handle, FileResourceHandle)
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        atomic_write_bytes(self.path, (json.dumps(payload, indent=2) + "\n").encode("utf-8"))

    def get(self, kind: ResourceKind) -> ResourceHandle | None:
        return self._handles.get(ResourceKind.parse(kind))

    def set(self, kind: ResourceKind, handle: ResourceHandle | Path | str) -> ResourceHandle:
        if isinstance(handle, (str, Path)):
            handle = FileResourceHandle(handle, prompt=self.prompt)
        resource_kind = ResourceKind.parse(kind)
        self._handles[resource_kind] = handle
        self._save()
        logger.info("Linked %s resource to %s", resource_kind.value, handle.name)
        return handle

    def remove(self, kind: ResourceKind) -> bool:
        removed = self._handles.pop(ResourceKind.parse(kind), None) is not None
        if removed:
            self._save()
        return removed

    def items(self) -> list[tuple[ResourceKind, ResourceHandle]]:
        return sorted(self._handles.items(), key=lambda item: item[0].value)


class ResourceLocks:
    """One lock per resource identity so overlapping update cycles queue instead of racing."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def lock_for(self, identity: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(identity, threading.Lock())

    @contextmanager
    def hold(self, identity: str) -> Iterator[None]:
        lock = self.lock_for(identity)
        if lock.locked():
            logger.debug("Waiting for in-flight update on %s", identity)
        with lock:
            yield
