"""
Contracts for the external collaborators the overlay publishes to and reads from:
the remote version-controlled repository and the static asset fallback bundle.
"""

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Set

from .errors import BackingStoreUnavailable
from .paths import safe_path


@dataclass
class RemoteEntry:
    path: str
    object_id: str
    is_file: bool = True


@dataclass
class RemoteFile:
    content: str
    object_id: str


class IRemoteRepository(ABC):
    """Remote repository client. No multi-file transaction is available."""

    @abstractmethod
    def list_tree(self) -> List[RemoteEntry]:
        """List every entry on the tracked branch."""
        pass

    @abstractmethod
    def read_file(self, path: str) -> Optional[RemoteFile]:
        """Read one file, or None when it does not exist."""
        pass

    @abstractmethod
    def write_file(self, path: str, content: str, message: str, known_object_id: str = None) -> None:
        """Create (known_object_id None) or update a file."""
        pass

    @abstractmethod
    def delete_file(self, path: str, object_id: str, message: str) -> None:
        """Delete a file keyed by its current object id."""
        pass

    def list_files(self) -> List[str]:
        """Normalized file paths from list_tree."""
        return [p for p in (safe_path(e.path) for e in self.list_tree() if e.is_file) if p]


def object_id_for(content: str) -> str:
    """Git-style blob id for content."""
    data = content.encode("utf-8")
    h = hashlib.sha1()
    h.update(f"blob {len(data)}\0".encode("utf-8"))
    h.update(data)
    return h.hexdigest()


class InMemoryRemoteRepository(IRemoteRepository):
    """Dict-backed repository for local runs and tests.

    Paths listed in fail_on are rejected on write/delete with
    BackingStoreUnavailable; set unavailable=True to fail every call.
    """

    def __init__(self, files: Dict[str, str] = None):
        self._files: Dict[str, str] = dict(files or {})
        self.fail_on: Set[str] = set()
        self.unavailable = False
        self.commits: List[Dict[str, str]] = []

    def _check_available(self, path: str = None):
        if self.unavailable or (path is not None and path in self.fail_on):
            raise BackingStoreUnavailable(f"Remote repository request failed for {path or 'tree'}")

    def list_tree(self) -> List[RemoteEntry]:
        self._check_available()
        return [RemoteEntry(path=p, object_id=object_id_for(c)) for p, c in sorted(self._files.items())]

    def read_file(self, path: str) -> Optional[RemoteFile]:
        self._check_available()
        if path not in self._files:
            return None
        content = self._files[path]
        return RemoteFile(content=content, object_id=object_id_for(content))

    def write_file(self, path: str, content: str, message: str, known_object_id: str = None) -> None:
        self._check_available(path)
        current = self._files.get(path)
        if current is not None and known_object_id != object_id_for(current):
            raise BackingStoreUnavailable(f"Object id mismatch for {path}; remote changed concurrently")
        if current is None and known_object_id:
            raise BackingStoreUnavailable(f"{path} no longer exists remotely")
        self._files[path] = content
        self.commits.append({"path": path, "operation": "update" if current is not None else "create", "message": message})

    def delete_file(self, path: str, object_id: str, message: str) -> None:
        self._check_available(path)
        current = self._files.get(path)
        if current is None or object_id != object_id_for(current):
            raise BackingStoreUnavailable(f"Object id mismatch for {path}; remote changed concurrently")
        del self._files[path]
        self.commits.append({"path": path, "operation": "delete", "message": message})

    def snapshot(self) -> Dict[str, str]:
        return dict(self._files)


class IAssetBundle(ABC):
    """Read-only static copy of the site used when the remote repository has no answer."""

    @abstractmethod
    def fetch(self, path: str) -> Optional[str]:
        """Content for path, or None for a 404."""
        pass


class DirectoryAssetBundle(IAssetBundle):
    """Serve assets from a local directory; never reads outside root."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def fetch(self, path: str) -> Optional[str]:
        safe = safe_path(path)
        if not safe:
            return None
        candidate = (self.root / safe).resolve()
        if self.root not in candidate.parents or not candidate.is_file():
            return None
        try:
            return candidate.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return None


class InMemoryAssetBundle(IAssetBundle):

    def __init__(self, files: Dict[str, str] = None):
        self._files = dict(files or {})

    def fetch(self, path: str) -> Optional[str]:
        return self._files.get(path)
