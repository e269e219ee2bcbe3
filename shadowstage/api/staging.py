"""
Staging endpoints: file tree, read, stage-write, stage-delete, search, preview and commit.

Mutating endpoints need X-Actor and Idempotency-Key headers; their responses go
through the idempotency ledger so a retried request gets the first answer back.
"""

import uuid
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import HTMLResponse, Response

from .schemas import (
    CommitRequest,
    FsDeleteRequest,
    FsReadResponse,
    FsTreeResponse,
    FsWriteRequest,
    PreviewBuildRequest,
    PreviewBuildResponse,
    RepoStatusResponse,
)
from ..core import config
from ..core.errors import CommitFailed, InvalidPath, ShadowStageError
from ..core.paths import PROTECTED_CORE_PATHS, safe_path
from ..core.preview import PreviewPage
from ..core.workspace import Workspace, get_workspace
from ..util.logging import logger

router = APIRouter()


class Caller:
    def __init__(self, actor: str, idempotency_key: str, trace_id: str):
        self.actor = actor
        self.idempotency_key = idempotency_key
        self.trace_id = trace_id


def workspace_dep() -> Workspace:
    return get_workspace()


def require_caller(
    x_actor: Optional[str] = Header(None),
    idempotency_key: Optional[str] = Header(None),
    x_trace_id: Optional[str] = Header(None),
) -> Caller:
    """Caller identity and idempotency key for mutating endpoints."""
    actor = (x_actor or "").strip()
    key = (idempotency_key or "").strip()
    if not actor:
        raise HTTPException(status_code=400, detail="X-Actor header is required")
    if not key or len(key) > 200:
        raise HTTPException(status_code=400, detail="Idempotency-Key header is required (max 200 characters)")
    return Caller(actor=actor[:120], idempotency_key=key, trace_id=(x_trace_id or "").strip() or str(uuid.uuid4()))


def _ledger_response(ws: Workspace, action: str, caller: Caller, run: Callable[[], Dict[str, Any]]) -> Response:
    """Run once per (action, Idempotency-Key); replays return the stored body verbatim."""
    cached = ws.ledger.lookup(action, caller.idempotency_key)
    if cached is not None:
        logger.log_idempotent_replay(action, caller.idempotency_key, cached.status)
        return Response(content=cached.response_json, status_code=cached.status,
                        media_type="application/json", headers={"Idempotent-Replayed": "true"})

    try:
        body = run()
        status = 200
    except ShadowStageError as e:
        if e.retryable:
            raise
        body = {"ok": False, "error": e.to_dict(), "traceId": caller.trace_id}
        status = e.status_code

    record = ws.ledger.record(action, caller.idempotency_key, status, body, trace_id=caller.trace_id)
    return Response(content=record.response_json, status_code=record.status, media_type="application/json")


@router.get("/api/fs/tree", response_model=FsTreeResponse)
def fs_tree(ws: Workspace = Depends(workspace_dep)):
    return FsTreeResponse(**ws.file_tree())


@router.get("/api/fs/read", response_model=FsReadResponse)
def fs_read(path: str = Query(""), ws: Workspace = Depends(workspace_dep)):
    if not safe_path(path):
        raise InvalidPath("Missing path.", {"path": path[:200]})
    resolved = ws.resolve(path).unwrap()
    return FsReadResponse(path=resolved.path, source=resolved.source, content=resolved.content)


@router.post("/api/fs/write")
def fs_write(request: FsWriteRequest, caller: Caller = Depends(require_caller),
             ws: Workspace = Depends(workspace_dep)):
    def run():
        entry = ws.stage_write(request.path, request.content, caller.actor)
        return {
            "ok": True,
            "staged": {"path": entry.path, **entry.to_dict()},
            "whatChanged": [f"Staged shadow edit: {entry.path}"],
        }

    return _ledger_response(ws, "fs.write", caller, run)


@router.post("/api/fs/delete")
def fs_delete(request: FsDeleteRequest, caller: Caller = Depends(require_caller),
              ws: Workspace = Depends(workspace_dep)):
    def run():
        entry = ws.stage_delete(request.path, caller.actor)
        return {
            "ok": True,
            "staged": {"path": entry.path, **entry.to_dict()},
            "whatChanged": [f"Staged shadow delete: {entry.path}"],
        }

    return _ledger_response(ws, "fs.delete", caller, run)


@router.get("/api/fs/search")
def fs_search(q: str = Query(""), ws: Workspace = Depends(workspace_dep)):
    query = q.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Missing q.")
    return {"ok": True, **ws.search(query)}


@router.post("/api/preview/build", response_model=PreviewBuildResponse)
def preview_build(request: PreviewBuildRequest, ws: Workspace = Depends(workspace_dep)):
    preview = ws.build_preview(request.routes, request.files, show_zones=request.showZones)
    return PreviewBuildResponse(**preview)


@router.get("/preview/{route:path}")
def preview_page(route: str, shadow: str = Query(""), zones: str = Query(""),
                 ws: Workspace = Depends(workspace_dep)):
    if shadow != "1":
        raise HTTPException(status_code=404, detail="Preview requires shadow=1")
    page = ws.render_preview(f"/{route}", show_zones=zones == "1")
    if not isinstance(page, PreviewPage):
        return Response(content=page.message, status_code=page.status, media_type="text/plain")
    return HTMLResponse(content=page.html, headers={"Cache-Control": "no-store"})


@router.get("/api/repo/status", response_model=RepoStatusResponse)
def repo_status(ws: Workspace = Depends(workspace_dep)):
    summary = ws.overlay.summary()
    return RepoStatusResponse(
        total=summary["total"],
        files=summary["files"],
        protectedPaths=sorted(PROTECTED_CORE_PATHS),
        confirmationPhrase=config.CONFIRMATION_PHRASE,
    )


@router.post("/api/repo/commit")
def repo_commit(request: CommitRequest, caller: Caller = Depends(require_caller),
                ws: Workspace = Depends(workspace_dep)):
    def run():
        outcome = ws.commit(request.message, allow_protected=request.allowProtected,
                            confirmation=request.confirmation, actor=caller.actor)
        if not outcome.ok:
            raise CommitFailed(outcome)
        return {"ok": True, **outcome.to_dict()}

    return _ledger_response(ws, "repo.commit", caller, run)
