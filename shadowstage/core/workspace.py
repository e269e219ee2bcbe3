"""
Workspace: one wired set of overlay, resolver, commit engine, ledger, token authority,
planner and dispatcher, plus the caller-facing staging operations.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from . import config
from .commit import CommitEngine, CommitOutcome
from .db import init_db
from .dispatcher import ActionDispatcher, DispatchResult
from .kv import IKeyValueStore, get_kv_store
from .ledger import IdempotencyLedger
from .merge import build_tree
from .overlay import OverlayIndexEntry, OverlayStore
from .planner import IPatchPlanner, RuleBasedPatchPlanner
from .preview import build_preview, render_preview
from .remote import DirectoryAssetBundle, IAssetBundle, InMemoryRemoteRepository, IRemoteRepository
from .resolver import ContentResolver, ResolveResult
from .tokens import ConfirmTokenAuthority
from ..util.logging import logger


@dataclass
class Workspace:
    db_path: str
    kv: IKeyValueStore
    overlay: OverlayStore
    remote: IRemoteRepository
    assets: Optional[IAssetBundle]
    resolver: ContentResolver
    commit_engine: CommitEngine
    ledger: IdempotencyLedger
    tokens: ConfirmTokenAuthority
    planner: IPatchPlanner
    dispatcher: ActionDispatcher = field(repr=False)

    @classmethod
    def create(cls, db_path: str = None, kv: IKeyValueStore = None, remote: IRemoteRepository = None,
               assets: IAssetBundle = None, planner: IPatchPlanner = None, secret: str = None,
               ttl_sec: int = None) -> 'Workspace':
        db_path = db_path or config.DB_PATH
        init_db(db_path)
        kv = kv if kv is not None else get_kv_store(db_path)
        remote = remote if remote is not None else InMemoryRemoteRepository()
        planner = planner if planner is not None else RuleBasedPatchPlanner()

        overlay = OverlayStore(kv, audit_db_path=db_path)
        resolver = ContentResolver(overlay, remote, assets)
        commit_engine = CommitEngine(overlay, remote, audit_db_path=db_path)
        ledger = IdempotencyLedger(db_path)
        tokens = ConfirmTokenAuthority(db_path, secret=secret, ttl_sec=ttl_sec)
        dispatcher = ActionDispatcher(overlay, commit_engine, ledger, tokens, planner)
        return cls(
            db_path=db_path,
            kv=kv,
            overlay=overlay,
            remote=remote,
            assets=assets,
            resolver=resolver,
            commit_engine=commit_engine,
            ledger=ledger,
            tokens=tokens,
            planner=planner,
            dispatcher=dispatcher,
        )

    # stage-write / stage-delete / list-staged
    def stage_write(self, path: str, content: str, actor: str = "admin") -> OverlayIndexEntry:
        return self.overlay.write(path, content, actor)

    def stage_delete(self, path: str, actor: str = "admin") -> OverlayIndexEntry:
        return self.overlay.delete(path, actor)

    def list_staged(self) -> List[Dict[str, Any]]:
        return [{"path": path, **entry.to_dict()} for path, entry in sorted(self.overlay.list().items())]

    def resolve(self, path: str) -> ResolveResult:
        return self.resolver.resolve(path)

    def build_preview(self, routes: Iterable[str] = None, files: Iterable[str] = None,
                      show_zones: bool = False) -> Dict[str, Any]:
        return build_preview(routes, files, show_zones=show_zones)

    def render_preview(self, route: str, show_zones: bool = False):
        return render_preview(self.resolver, route, show_zones)

    def commit(self, message: str = None, allow_protected: bool = False, confirmation: str = "",
               actor: str = "admin") -> CommitOutcome:
        return self.commit_engine.commit(message, allow_protected=allow_protected,
                                         confirmation=confirmation, actor=actor)

    def dispatch_action(self, payload: Dict[str, Any], trace_id: str = None) -> DispatchResult:
        return self.dispatcher.dispatch(payload, trace_id=trace_id)

    def file_tree(self) -> Dict[str, Any]:
        files = self.resolver.merged_files()
        return {"files": files, "tree": build_tree(files), "shadowCount": len(self.overlay.list())}

    def search(self, query: str) -> Dict[str, Any]:
        return self.resolver.search(query)


_workspace: Optional[Workspace] = None


def get_workspace() -> Workspace:
    """Process-wide workspace built from configuration on first use."""
    global _workspace
    if _workspace is None:
        assets = DirectoryAssetBundle(config.ASSET_ROOT)
        _workspace = Workspace.create(assets=assets)
        logger.info(f"Workspace initialized (backend={config.get_shadow_backend()}, db={_workspace.db_path})")
    return _workspace


def set_workspace(workspace: Workspace) -> Workspace:
    global _workspace
    _workspace = workspace
    return workspace


def reset_workspace() -> None:
    global _workspace
    _workspace = None
