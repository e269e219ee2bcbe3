"""
Patch planner contract and the built-in keyword planner.

The dispatcher forwards mode, command, target and page to a planner and treats
the returned dict as opaque, except for an optional `actions` list of edits
({op: write|delete, path, content}) which it stages before committing.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from .errors import PlannerError

PLANNER_MODES = ("plan", "apply", "deploy", "rollback_last")

PLAN_VALIDATIONS = ["governance-check", "env-audit", "preview-integrity"]

# keyword -> (route, backing file)
KEYWORD_TARGETS = [
    (("pricing",), "/pricing", "pricing.html"),
    (("store",), "/store", "store.html"),
    (("home", "homepage"), "/", "index.html"),
]


@dataclass
class PlannerRequest:
    mode: str
    command: str
    target: str = "site"
    page: Optional[str] = None

    def __post_init__(self):
        if self.mode not in PLANNER_MODES:
            raise PlannerError(f"Unknown planner mode: {self.mode}", {"mode": self.mode})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class IPatchPlanner(ABC):
    """External planner that turns a free-text command into a plan or edit actions."""

    @abstractmethod
    def run(self, request: PlannerRequest) -> Dict[str, Any]:
        """Return the planner output. Raise PlannerError on failure."""
        pass


def parse_intent(command: str) -> Dict[str, Any]:
    """Keyword intent parse: targets, operations, preview routes and whether a deploy was asked for."""
    text = str(command or "").lower()
    routes: List[str] = []
    files: List[str] = []
    for keywords, route, file_path in KEYWORD_TARGETS:
        if any(k in text for k in keywords):
            routes.append(route)
            files.append(file_path)

    operations = []
    if "delete" in text:
        operations.append("delete")
    if "create" in text or "add" in text:
        operations.append("create")
    if "edit" in text or "update" in text:
        operations.append("update")

    return {
        "intent": operations[0] if operations else "update",
        "targets": {"routes": routes, "files": files},
        "operations": operations or ["update"],
        "validations": list(PLAN_VALIDATIONS),
        "previewRoutes": routes or ["/"],
        "deployRequired": any(k in text for k in ("deploy", "ship", "publish")),
    }


class RuleBasedPatchPlanner(IPatchPlanner):
    """Offline planner: describes intent, never emits edit actions."""

    def run(self, request: PlannerRequest) -> Dict[str, Any]:
        plan = parse_intent(request.command)
        if request.page and request.page != "all":
            if request.page not in plan["targets"]["files"]:
                plan["targets"]["files"].append(request.page)
        result = {
            "mode": request.mode,
            "command": request.command,
            "target": request.target,
            "executionPlan": plan,
        }
        if request.mode == "rollback_last":
            result["rollback"] = {"requested": True, "note": "No rollback history is kept by this planner."}
        return result
