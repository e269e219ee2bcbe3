"""
Overlay store: the staged, not-yet-published set of file edits and deletions.

Two kinds of stored objects:
- one index (path -> {deleted, updatedAt, bytes}) so listing never loads content
- one blob per staged path holding its content or a tombstone

Blob is always written before the index entry. A blob without an index entry is
garbage left by an interrupted write and is ignored by reads; an index entry
without a blob must never exist.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .dao import add_audit_event, utc_now_iso
from .kv import IKeyValueStore
from .paths import classify_risk, guard_stage_write, require_safe_path
from ..util.logging import logger

SHADOW_INDEX_KEY = "cc:shadow:index:v1"
SHADOW_FILE_PREFIX = "cc:shadow:file:"


@dataclass
class OverlayIndexEntry:
    path: str
    deleted: bool
    updated_at: str
    byte_size: int

    def to_dict(self) -> Dict[str, Any]:
        return {"deleted": self.deleted, "updatedAt": self.updated_at, "bytes": self.byte_size}


@dataclass
class OverlayBlob:
    path: str
    content: str
    deleted: bool
    updated_at: str
    byte_size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "content": self.content,
            "deleted": self.deleted,
            "updatedAt": self.updated_at,
            "bytes": self.byte_size,
        }

    @classmethod
    def from_dict(cls, path: str, data: Dict[str, Any]) -> 'OverlayBlob':
        return cls(
            path=path,
            content=str(data.get("content") or ""),
            deleted=bool(data.get("deleted")),
            updated_at=str(data.get("updatedAt") or ""),
            byte_size=int(data.get("bytes") or 0),
        )


def blob_key(path: str) -> str:
    return f"{SHADOW_FILE_PREFIX}{path}"


class OverlayStore:
    """Virtual filesystem overlay backed by an IKeyValueStore."""

    def __init__(self, kv: IKeyValueStore, audit_db_path: str = None):
        self.kv = kv
        self.audit_db_path = audit_db_path

    def _load_index(self) -> Dict[str, Dict[str, Any]]:
        raw = self.kv.get(SHADOW_INDEX_KEY)
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            logger.warning("Overlay index is not valid JSON; treating overlay as empty")
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def _save_index(self, index: Dict[str, Dict[str, Any]]) -> None:
        self.kv.put(SHADOW_INDEX_KEY, json.dumps(index, sort_keys=True))

    def _stage(self, path: str, content: str, deleted: bool, actor: str) -> OverlayIndexEntry:
        blob = OverlayBlob(
            path=path,
            content="" if deleted else content,
            deleted=deleted,
            updated_at=utc_now_iso(),
            byte_size=0 if deleted else len(content.encode("utf-8")),
        )
        entry = OverlayIndexEntry(path=path, deleted=deleted, updated_at=blob.updated_at, byte_size=blob.byte_size)

        self.kv.put(blob_key(path), json.dumps(blob.to_dict()))
        index = self._load_index()
        index[path] = entry.to_dict()
        self._save_index(index)

        action = "fs.delete" if deleted else "fs.write"
        details = {"path": path} if deleted else {"path": path, "bytes": blob.byte_size}
        add_audit_event(action, actor, details, db_path=self.audit_db_path)
        logger.log_overlay_operation("delete" if deleted else "write", path, blob.byte_size)
        return entry

    def write(self, path: str, content: str, actor: str = "admin") -> OverlayIndexEntry:
        """Stage new content for path."""
        safe = require_safe_path(path)
        guard_stage_write(safe, "write")
        return self._stage(safe, str(content or ""), False, actor)

    def delete(self, path: str, actor: str = "admin") -> OverlayIndexEntry:
        """Stage a deletion. A tombstone is stored so a remote file can be hidden."""
        safe = require_safe_path(path)
        guard_stage_write(safe, "delete")
        return self._stage(safe, "", True, actor)

    def read(self, path: str) -> Optional[OverlayBlob]:
        """Staged blob for path, or None when path is not staged."""
        index = self._load_index()
        if path not in index:
            return None
        raw = self.kv.get(blob_key(path))
        if not raw:
            return None
        try:
            return OverlayBlob.from_dict(path, json.loads(raw))
        except (json.JSONDecodeError, ValueError, TypeError):
            logger.warning(f"Overlay blob for '{path}' is unreadable")
            return None

    def list(self) -> Dict[str, OverlayIndexEntry]:
        entries = {}
        for path, meta in self._load_index().items():
            meta = meta if isinstance(meta, dict) else {}
            entries[path] = OverlayIndexEntry(
                path=path,
                deleted=bool(meta.get("deleted")),
                updated_at=str(meta.get("updatedAt") or ""),
                byte_size=int(meta.get("bytes") or 0),
            )
        return entries

    def clear(self) -> int:
        """Drop every staged entry. Index goes first so an interruption only leaves orphan blobs."""
        index = self._load_index()
        self._save_index({})
        for path in index:
            self.kv.delete(blob_key(path))
        logger.log_overlay_operation("clear", "*", status=f"cleared:{len(index)}")
        return len(index)

    def orphaned_blob_paths(self) -> List[str]:
        """Paths that have a blob but no index entry."""
        index = self._load_index()
        paths = [key[len(SHADOW_FILE_PREFIX):] for key in self.kv.keys(SHADOW_FILE_PREFIX)]
        return [p for p in paths if p not in index]

    def summary(self) -> Dict[str, Any]:
        files = [
            {
                "path": entry.path,
                "deleted": entry.deleted,
                "updatedAt": entry.updated_at,
                "bytes": entry.byte_size,
                "risk": classify_risk(entry.path),
            }
            for entry in self.list().values()
        ]
        files.sort(key=lambda f: f["path"])
        return {"total": len(files), "files": files}
