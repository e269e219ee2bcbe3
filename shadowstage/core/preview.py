"""
Preview route mapping and preview page rendering.

The route/file mapping is a lossy heuristic for "which page should I preview
after this edit", not a routing table. Rendering only decorates the response
body; staged content is never modified.
"""

import html as html_lib
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Union
from urllib.parse import urlparse

from .paths import safe_path
from .resolver import ContentResolver, ResolveErr

PREVIEW_WATERMARK = "PREVIEW - SHADOW STATE"
ADMIN_PREVIEW_ROUTE = "/admin/mission"

ROUTE_RE = re.compile(r"^/[a-zA-Z0-9/_-]*$")
KNOWN_SECTION_RE = re.compile(r"\b(store|pricing|blog|contact|features|templates|gallery)\b")
ASSET_DIR_RE = re.compile(r"^(css|js|images|assets|public|static|src|components)$")

WATERMARK_HTML = (
    '<div style="position:fixed;bottom:12px;right:12px;z-index:2147483647;'
    'font:700 12px/1.2 monospace;padding:8px 10px;border:1px solid #ef4444;'
    'background:rgba(127,29,29,.84);color:#fff;border-radius:8px;">'
    f'{PREVIEW_WATERMARK}</div>'
)

ZONES_HTML = (
    '<div style="position:fixed;inset:0;pointer-events:none;z-index:2147483646">'
    '<div style="position:absolute;top:8%;left:4%;right:4%;height:16%;border:2px dashed #22c55e;background:rgba(34,197,94,.08)"></div>'
    '<div style="position:absolute;top:36%;left:4%;right:4%;height:18%;border:2px dashed #f59e0b;background:rgba(245,158,11,.08)"></div>'
    '<div style="position:absolute;bottom:6%;left:4%;right:4%;height:14%;border:2px dashed #3b82f6;background:rgba(59,130,246,.08)"></div>'
    '</div>'
)


def _strip_preview_prefix(route: str) -> str:
    if route == "/preview" or route.startswith("/preview/"):
        return route[len("/preview"):]
    return route


def _strip_query(route: str) -> str:
    return re.sub(r"[?#].*$", "", route)


def normalize_preview_route(value) -> str:
    """Canonical preview route for value, or "" when it cannot be a route."""
    route = str(value or "").strip()
    if not route:
        return ""
    if re.match(r"^https?://", route, re.IGNORECASE):
        try:
            route = urlparse(route).path or "/"
        except ValueError:
            return ""
    route = _strip_preview_prefix(route)
    if not route.startswith("/"):
        route = f"/{route}"
    route = _strip_query(route)
    if not route or route in ("/index", "/index.html"):
        return "/"
    if route.endswith(".html"):
        route = route[:-5]
    if not ROUTE_RE.match(route):
        return ""
    return route or "/"


def route_to_file(route) -> str:
    """Backing file path for a preview route ("" when the route cannot map to a safe path)."""
    r = str(route or "/").strip() or "/"
    if not r.startswith("/"):
        r = f"/{r}"
    r = _strip_query(_strip_preview_prefix(r)) or "/"
    if r in ("/", "/index"):
        return "index.html"
    if r.endswith(".html"):
        return safe_path(r)
    return safe_path(f"{r[1:]}.html")


def file_to_route(file_path) -> str:
    """Page most likely affected by an edit to file_path."""
    p = safe_path(file_path)
    if not p:
        return "/"
    lower = p.lower()

    if lower.startswith("admin/"):
        return ADMIN_PREVIEW_ROUTE

    if lower == "index.html":
        return "/"

    if lower.endswith(".html"):
        name = p[:-5]
        if "/" not in lower:
            return "/" if name == "index" else f"/{name}"
        return name if name.startswith("/") else f"/{name}"

    match = KNOWN_SECTION_RE.search(lower)
    if match:
        return normalize_preview_route(f"/{match.group(0)}")

    if "/" in lower:
        first = lower.split("/")[0]
        # shared assets affect the whole site
        if ASSET_DIR_RE.match(first):
            return "/"
        return f"/{first}"

    return "/"


def build_preview(routes: Iterable[str] = None, files: Iterable[str] = None,
                  show_zones: bool = False, now_ms: int = None) -> Dict[str, Any]:
    """Preview links for explicit routes and for the routes of edited files."""
    ordered: List[str] = []

    def add_route(candidate):
        normalized = normalize_preview_route(candidate)
        if normalized and normalized not in ordered:
            ordered.append(normalized)

    for route in routes or []:
        if isinstance(route, str) and route.strip():
            add_route(route)

    file_list = [f for f in (files or []) if isinstance(f, str)]
    for file in file_list:
        normalized = safe_path(file)
        if normalized:
            add_route(file_to_route(normalized))

    if not ordered:
        ordered.append("/")

    touched_index = any("index.html" in f.lower() for f in file_list)
    if touched_index and len(ordered) > 1 and ordered[0] != "/" and "/" in ordered:
        ordered.remove("/")
        ordered.insert(0, "/")

    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    zone_flag = "&zones=1" if show_zones else ""
    return {
        "previewRoutes": ordered,
        "previews": [
            {"route": route, "url": f"/preview{route}?shadow=1{zone_flag}&ts={ts}"}
            for route in ordered
        ],
    }


def render_preview_html(html: str, route: str, show_zones: bool = False) -> str:
    """Return html with noindex meta, route meta and the preview watermark injected."""
    marker = (
        '<meta name="robots" content="noindex,nofollow" />'
        f'<meta name="shadow-preview-route" content="{html_lib.escape(str(route or "/"), quote=True)}" />'
    )
    zones = ZONES_HTML if show_zones else ""
    out = str(html or "")
    if "</head>" in out:
        out = out.replace("</head>", f"{marker}</head>", 1)
    else:
        # no </head>: lead with the marker
        out = f"{marker}{out}"
    if "</body>" in out:
        idx = out.rfind("</body>")
        out = f"{out[:idx]}{zones}{WATERMARK_HTML}{out[idx:]}"
    return out


@dataclass
class PreviewPage:
    route: str
    path: str
    source: str
    html: str


def render_preview(resolver: ContentResolver, route: str, show_zones: bool = False) -> Union[PreviewPage, ResolveErr]:
    """Resolve the route's backing file and render it as a watermarked preview."""
    raw = str(route or "/")
    if not raw.startswith("/"):
        raw = f"/{raw}"
    file_path = route_to_file(raw)
    if not file_path:
        return ResolveErr(path=raw, kind="NotFound", message="Preview target not found.")
    resolved = resolver.resolve(file_path)
    if not resolved.ok:
        return resolved
    return PreviewPage(
        route=raw,
        path=file_path,
        source=resolved.source,
        html=render_preview_html(resolved.content, raw, show_zones),
    )
