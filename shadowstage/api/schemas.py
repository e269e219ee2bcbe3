"""
Request and response models for the staging HTTP API.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, StrictBool, field_validator


class FsWriteRequest(BaseModel):
    path: str
    content: str = ""

    @field_validator('path')
    @classmethod
    def path_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('path cannot be empty')
        return v


class FsDeleteRequest(BaseModel):
    path: str

    @field_validator('path')
    @classmethod
    def path_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('path cannot be empty')
        return v


class FsReadResponse(BaseModel):
    ok: bool = True
    path: str
    source: str
    content: str


class FsTreeResponse(BaseModel):
    ok: bool = True
    files: List[str]
    tree: Dict[str, Any]
    shadowCount: int


class PreviewBuildRequest(BaseModel):
    routes: List[str] = []
    files: List[str] = []
    showZones: bool = False


class PreviewLink(BaseModel):
    route: str
    url: str


class PreviewBuildResponse(BaseModel):
    ok: bool = True
    previewRoutes: List[str]
    previews: List[PreviewLink]


class CommitRequest(BaseModel):
    message: Optional[str] = None
    allowProtected: StrictBool = False
    confirmation: str = ""

    @field_validator('message')
    @classmethod
    def message_length(cls, v):
        if v is not None and len(v) > 500:
            raise ValueError('message must be at most 500 characters')
        return v


class RepoStatusResponse(BaseModel):
    ok: bool = True
    total: int
    files: List[Dict[str, Any]]
    protectedPaths: List[str]
    confirmationPhrase: str


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    staged_count: int


class AuditEventResponse(BaseModel):
    id: str
    ts: str
    actor: str
    action: str
    details: Dict[str, Any]


class AuditListResponse(BaseModel):
    events: List[AuditEventResponse]
