"""
HTTP entry point for the shadow staging service.
"""

from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse, Response

from .schemas import AuditEventResponse, AuditListResponse, HealthResponse
from .staging import router as staging_router, workspace_dep
from ..core.config import MAX_REQUEST_BYTES, VERSION, debug_enabled
from ..core.dao import list_audit_events
from ..core.db import health_check
from ..core.errors import ShadowStageError
from ..core.workspace import Workspace
from ..util.logging import logger

app = FastAPI(
    title="Shadow Stage API",
    version=VERSION,
    description="Staged file overlay with preview, atomic commit and confirmed action dispatch",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)

app.include_router(staging_router, tags=["staging"])


@app.exception_handler(ShadowStageError)
async def shadowstage_exception_handler(request, exc: ShadowStageError):
    """Every domain error leaves as {"ok": false, "error": {kind, message, retryable, ...}}."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.to_dict()})


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(ws: Workspace = Depends(workspace_dep)):
    """Check system health."""
    db_health = health_check(ws.db_path)
    try:
        staged_count = len(ws.overlay.list())
    except ShadowStageError:
        staged_count = 0
        db_health = False

    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        staged_count=staged_count
    )


@app.post("/api/execute")
def execute_action(
    payload: Any = Body(None),
    content_length: Optional[int] = Header(None),
    x_actor: Optional[str] = Header(None),
    x_trace_id: Optional[str] = Header(None),
    ws: Workspace = Depends(workspace_dep),
):
    """Dispatch one action; the response body is stored and replayed per (action, idempotencyKey)."""
    if content_length is not None and content_length > MAX_REQUEST_BYTES:
        raise HTTPException(status_code=413, detail="Request body too large")
    if isinstance(payload, dict) and not payload.get("actor") and x_actor and x_actor.strip():
        payload = {**payload, "actor": x_actor.strip()}

    result = ws.dispatch_action(payload, trace_id=(x_trace_id or "").strip() or None)
    headers = {"Idempotent-Replayed": "true"} if result.replayed else {}
    trace_id = result.payload.get("traceId")
    if trace_id:
        headers["X-Trace-Id"] = trace_id
    return Response(content=result.body, status_code=result.status, media_type="application/json",
                    headers=headers)


@app.get("/api/audit", response_model=AuditListResponse)
def audit_endpoint(limit: int = 50, action: Optional[str] = None, ws: Workspace = Depends(workspace_dep)):
    """Recent audit entries (debug mode only)."""
    if not debug_enabled():
        raise HTTPException(status_code=403, detail="Audit endpoint requires debug mode")
    events = list_audit_events(limit=max(1, min(limit, 500)), action=action, db_path=ws.db_path)
    return AuditListResponse(events=[AuditEventResponse(**e.to_dict()) for e in events])
