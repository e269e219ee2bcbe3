"""
Content resolver: what is this path's content right now.

Precedence is overlay, then remote repository, then the static asset bundle.
resolve() returns ResolveOk or ResolveErr instead of raising, so every caller
handles each failure kind explicitly.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from . import errors
from .merge import merge_file_lists
from .overlay import OverlayStore
from .paths import safe_path
from .remote import IAssetBundle, IRemoteRepository
from ..util.logging import logger

SEARCH_MAX_PATH_MATCHES = 300
SEARCH_MAX_CONTENT_SCANS = 40

_ERROR_CLASSES = {
    "InvalidPath": errors.InvalidPath,
    "Gone": errors.Gone,
    "NotFound": errors.NotFound,
    "BackingStoreUnavailable": errors.BackingStoreUnavailable,
}


@dataclass
class ResolveOk:
    path: str
    content: str
    source: str  # overlay | remote | assets
    object_id: Optional[str] = None
    ok: bool = field(default=True, init=False)

    def unwrap(self) -> 'ResolveOk':
        return self


@dataclass
class ResolveErr:
    path: str
    kind: str
    message: str
    ok: bool = field(default=False, init=False)

    @property
    def status(self) -> int:
        return _ERROR_CLASSES.get(self.kind, errors.NotFound).status_code

    def unwrap(self):
        raise _ERROR_CLASSES.get(self.kind, errors.NotFound)(self.message, {"path": self.path})


ResolveResult = Union[ResolveOk, ResolveErr]


class ContentResolver:
    """Resolve a path with overlay-first precedence and record where the bytes came from."""

    def __init__(self, overlay: OverlayStore, remote: Optional[IRemoteRepository] = None,
                 assets: Optional[IAssetBundle] = None):
        self.overlay = overlay
        self.remote = remote
        self.assets = assets

    def resolve(self, path: str, include_deleted: bool = False) -> ResolveResult:
        safe = safe_path(path)
        if not safe:
            return ResolveErr(path=str(path or ""), kind="InvalidPath", message="Invalid path.")

        staged = self.overlay.read(safe)
        if staged is not None and staged.deleted and not include_deleted:
            return ResolveErr(path=safe, kind="Gone", message="File is staged for deletion.")
        if staged is not None and not staged.deleted:
            return ResolveOk(path=safe, content=staged.content, source="overlay")

        remote_error = None
        if self.remote is not None:
            try:
                remote_file = self.remote.read_file(safe)
                if remote_file is not None:
                    return ResolveOk(path=safe, content=remote_file.content, source="remote",
                                     object_id=remote_file.object_id)
            except errors.BackingStoreUnavailable as e:
                remote_error = e
                logger.warning(f"Remote read failed for '{safe}', trying asset bundle: {e.message}")

        if self.assets is not None:
            content = self.assets.fetch(safe)
            if content is not None:
                return ResolveOk(path=safe, content=content, source="assets")

        if remote_error is not None:
            return ResolveErr(path=safe, kind="BackingStoreUnavailable", message=remote_error.message)
        return ResolveErr(path=safe, kind="NotFound", message="File not found.")

    def merged_files(self) -> List[str]:
        """Merge view over a fresh remote listing; a remote outage degrades to overlay-only."""
        repo_files: List[str] = []
        if self.remote is not None:
            try:
                repo_files = self.remote.list_files()
            except errors.BackingStoreUnavailable as e:
                logger.warning(f"Remote tree listing failed, showing overlay only: {e.message}")
        return merge_file_lists(repo_files, self.overlay.list())

    def search(self, query: str) -> Dict[str, Any]:
        q = str(query or "").strip().lower()
        files = self.merged_files()
        path_matches = [p for p in files if q in p.lower()][:SEARCH_MAX_PATH_MATCHES]

        content_matches = []
        for candidate in path_matches[:SEARCH_MAX_CONTENT_SCANS]:
            resolved = self.resolve(candidate)
            if not resolved.ok:
                continue
            idx = resolved.content.lower().find(q)
            if idx < 0:
                continue
            content_matches.append({
                "path": candidate,
                "source": resolved.source,
                "snippet": resolved.content[max(0, idx - 60):idx + 120],
            })

        return {"query": q, "pathMatches": path_matches, "contentMatches": content_matches}
