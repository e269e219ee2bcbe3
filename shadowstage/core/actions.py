"""
Action payloads accepted by the dispatcher, validated at the boundary.

One model per action kind; `action` is the discriminator, so each kind has its
own required-field set and downstream code never reads raw dicts.
"""

import re
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from .errors import InvalidAction

VALID_PUBLIC_PAGE_RE = re.compile(r"^[a-z0-9-]+(?:\.html)?$")
MAX_IDEMPOTENCY_KEY_LENGTH = 200

DEFAULT_DEPLOY_COMMAND = "Deploy latest changes"
DEFAULT_ROLLBACK_COMMAND = "Rollback last change"

EVENT_TYPES = {
    "plan": "planned",
    "preview": "previewed",
    "apply": "applied",
    "deploy": "deployed",
    "rollback": "rolled_back",
    "status": "status",
}

TOKEN_ACTIONS = ("apply", "deploy", "rollback")


def validate_page_name(page: str) -> str:
    """Canonical public page name ("pricing" -> "pricing.html"), or "all".

    Raises ValueError for directories, traversal and admin pages.
    """
    value = str(page or "").strip().lower()
    value = re.sub(r"^/+", "", value)
    if value.startswith("./"):
        value = value[2:]
    if not value:
        raise ValueError("Page name must be a non-empty string")
    if value == "all":
        return value
    if "/" in value or "\\" in value or ".." in value or not VALID_PUBLIC_PAGE_RE.match(value):
        raise ValueError(f"Invalid page '{value}'. Use a public page like 'partners.html'.")
    if not value.endswith(".html"):
        value = f"{value}.html"
    if value == "admin.html":
        raise ValueError("Admin pages cannot be targeted.")
    return value


class BaseAction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    idempotencyKey: str
    target: Literal["site", "sandbox"] = "site"
    actor: str = "bot"
    safetyLevel: Literal["low", "medium", "high"] = "medium"
    page: Optional[str] = None

    @field_validator('idempotencyKey')
    @classmethod
    def key_must_be_valid(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('idempotencyKey cannot be empty')
        if len(v) > MAX_IDEMPOTENCY_KEY_LENGTH:
            raise ValueError(f'idempotencyKey must be at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters')
        return v

    @field_validator('target', mode='before')
    @classmethod
    def target_defaults_to_site(cls, v):
        return "sandbox" if v == "sandbox" else "site"

    @field_validator('safetyLevel', mode='before')
    @classmethod
    def safety_level_defaults_to_medium(cls, v):
        v = str(v or "").strip().lower()
        return v if v in ("low", "medium", "high") else "medium"

    @field_validator('actor', mode='before')
    @classmethod
    def actor_defaults_to_bot(cls, v):
        if isinstance(v, dict):
            v = v.get("type")
        return v.strip() if isinstance(v, str) and v.strip() else "bot"

    @field_validator('page')
    @classmethod
    def page_must_be_public(cls, v):
        if v is None or not v.strip():
            return None
        return validate_page_name(v)

    @property
    def requires_token(self) -> bool:
        return self.action in TOKEN_ACTIONS

    @property
    def event_type(self) -> str:
        return EVENT_TYPES[self.action]


def _require_command(v):
    v = str(v or "").strip()
    if not v:
        raise ValueError('command is required')
    return v


def _require_token(v):
    v = str(v or "").strip()
    if not v:
        raise ValueError('confirmToken is required')
    return v


class PlanAction(BaseAction):
    action: Literal["plan"]
    command: str

    @field_validator('command', mode='before')
    @classmethod
    def command_required(cls, v):
        return _require_command(v)


class PreviewAction(BaseAction):
    action: Literal["preview"]
    command: str
    routes: list = Field(default_factory=list)
    files: list = Field(default_factory=list)
    showZones: bool = False

    @field_validator('command', mode='before')
    @classmethod
    def command_required(cls, v):
        return _require_command(v)


class ApplyAction(BaseAction):
    action: Literal["apply"]
    command: str
    confirmToken: str
    message: Optional[str] = None

    @field_validator('command', mode='before')
    @classmethod
    def command_required(cls, v):
        return _require_command(v)

    @field_validator('confirmToken', mode='before')
    @classmethod
    def token_required(cls, v):
        return _require_token(v)


class DeployAction(BaseAction):
    action: Literal["deploy"]
    command: str = DEFAULT_DEPLOY_COMMAND
    confirmToken: str
    message: Optional[str] = None

    @field_validator('command', mode='before')
    @classmethod
    def command_default(cls, v):
        return str(v or "").strip() or DEFAULT_DEPLOY_COMMAND

    @field_validator('confirmToken', mode='before')
    @classmethod
    def token_required(cls, v):
        return _require_token(v)


class RollbackAction(BaseAction):
    action: Literal["rollback"]
    command: str = DEFAULT_ROLLBACK_COMMAND
    confirmToken: str

    @field_validator('command', mode='before')
    @classmethod
    def command_default(cls, v):
        return str(v or "").strip() or DEFAULT_ROLLBACK_COMMAND

    @field_validator('confirmToken', mode='before')
    @classmethod
    def token_required(cls, v):
        return _require_token(v)


class StatusAction(BaseAction):
    action: Literal["status"]
    limit: int = 10


ActionPayload = Annotated[
    Union[PlanAction, PreviewAction, ApplyAction, DeployAction, RollbackAction, StatusAction],
    Field(discriminator="action"),
]

_ACTION_ADAPTER = TypeAdapter(ActionPayload)


def _flatten(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Lift command/page/confirmToken out of a nested `parameters` object and normalize `action`."""
    data = dict(raw)
    parameters = data.pop("parameters", None)
    if isinstance(parameters, dict):
        for field_name in ("command", "page", "confirmToken"):
            if not data.get(field_name) and parameters.get(field_name):
                data[field_name] = parameters[field_name]
    data["action"] = str(data.get("action") or "").strip().lower()
    if isinstance(data.get("idempotencyKey"), (int, float)):
        data["idempotencyKey"] = str(data["idempotencyKey"])
    return data


def parse_action_payload(raw: Any) -> BaseAction:
    """Validate a raw payload into its action model. Raises InvalidAction."""
    if not isinstance(raw, dict):
        raise InvalidAction("Action payload must be a JSON object.")
    data = _flatten(raw)
    if data["action"] not in EVENT_TYPES:
        raise InvalidAction(
            "Invalid action. Use plan, preview, apply, deploy, rollback or status.",
            {"action": data["action"]},
        )
    try:
        return _ACTION_ADAPTER.validate_python(data)
    except ValidationError as e:
        problems = [
            {"field": ".".join(str(p) for p in err["loc"][1:]) or str(err["loc"][0]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise InvalidAction(
            f"Invalid {data['action']} payload: {problems[0]['field']}: {problems[0]['message']}",
            {"action": data["action"], "errors": problems},
        )
