"""
Preview route mapping, preview link building and preview rendering tests.
"""

import pytest

from shadowstage.core.preview import (
    ADMIN_PREVIEW_ROUTE,
    PREVIEW_WATERMARK,
    PreviewPage,
    build_preview,
    file_to_route,
    normalize_preview_route,
    render_preview,
    render_preview_html,
    route_to_file,
)
from shadowstage.core.resolver import ContentResolver


class TestRouteToFile:

    @pytest.mark.parametrize("route,expected", [
        ("/", "index.html"),
        ("/index", "index.html"),
        ("/pricing", "pricing.html"),
        ("/preview/pricing", "pricing.html"),
        ("/preview/pricing?shadow=1&zones=1", "pricing.html"),
        ("/about.html", "about.html"),
        ("/blog/post", "blog/post.html"),
        ("pricing#plans", "pricing.html"),
    ])
    def test_mapping(self, route, expected):
        assert route_to_file(route) == expected

    def test_unsafe_route_maps_to_nothing(self):
        assert route_to_file("/../secret") == ""


class TestFileToRoute:

    @pytest.mark.parametrize("path,expected", [
        ("index.html", "/"),
        ("pricing.html", "/pricing"),
        ("blog/post.html", "/blog/post"),
        ("admin/hub.js", ADMIN_PREVIEW_ROUTE),
        ("admin/integrated-dashboard.html", ADMIN_PREVIEW_ROUTE),
        ("store/items.json", "/store"),
        ("css/site.css", "/"),
        ("images/logo.png", "/"),
        ("docs/guide.md", "/docs"),
        ("README.md", "/"),
        ("", "/"),
    ])
    def test_mapping(self, path, expected):
        assert file_to_route(path) == expected

    @pytest.mark.parametrize("route", ["/", "/pricing", "/store", "/blog/post"])
    def test_round_trip_is_stable_for_canonical_routes(self, route):
        once = file_to_route(route_to_file(route))
        assert once == route
        assert file_to_route(route_to_file(once)) == once


class TestNormalizeRoute:

    def test_absolute_url(self):
        assert normalize_preview_route("https://example.com/pricing.html?x=1") == "/pricing"

    def test_index_forms(self):
        assert normalize_preview_route("/index.html") == "/"
        assert normalize_preview_route("/preview") == "/"

    def test_rejects_odd_characters(self):
        assert normalize_preview_route("/bad route") == ""
        assert normalize_preview_route("") == ""


class TestBuildPreview:

    def test_edited_pricing_previews_pricing_first(self):
        result = build_preview(files=["pricing.html"], now_ms=1700000000000)
        assert result["previewRoutes"] == ["/pricing"]
        assert result["previews"][0] == {
            "route": "/pricing",
            "url": "/preview/pricing?shadow=1&ts=1700000000000",
        }

    def test_defaults_to_home(self):
        assert build_preview()["previewRoutes"] == ["/"]
        assert build_preview(routes=["/bad route"])["previewRoutes"] == ["/"]

    def test_touching_index_moves_home_to_front(self):
        result = build_preview(routes=["/pricing"], files=["index.html"])
        assert result["previewRoutes"] == ["/", "/pricing"]

    def test_dedups_in_order(self):
        result = build_preview(routes=["/store", "/pricing"], files=["pricing.html", "store/a.json"])
        assert result["previewRoutes"] == ["/store", "/pricing"]

    def test_zone_flag(self):
        result = build_preview(routes=["/store"], show_zones=True, now_ms=5)
        assert result["previews"][0]["url"] == "/preview/store?shadow=1&zones=1&ts=5"


class TestRenderPreview:

    def test_injects_meta_and_watermark(self):
        html = "<html><head><title>t</title></head><body><p>x</p></body></html>"
        out = render_preview_html(html, "/pricing")
        assert out.index('content="noindex,nofollow"') < out.index("</head>")
        assert out.index(PREVIEW_WATERMARK) < out.index("</body>")
        assert 'content="/pricing"' in out
        assert "border:2px dashed" not in out

    def test_zones_only_when_requested(self):
        out = render_preview_html("<body></body>", "/", show_zones=True)
        assert "border:2px dashed" in out

    @pytest.mark.parametrize("html", ["<body><p>x</p></body>", "<p>fragment</p>", ""])
    def test_headless_html_still_gets_noindex(self, html):
        out = render_preview_html(html, "/pricing")
        assert out.startswith('<meta name="robots" content="noindex,nofollow" />')
        assert 'content="/pricing"' in out
        assert out.count("noindex,nofollow") == 1

    def test_route_meta_is_escaped(self):
        out = render_preview_html("<head></head>", '/"><script>')
        assert "<script>" not in out

    def test_stored_content_is_not_modified(self, overlay, remote):
        overlay.write("pricing.html", "<html><head></head><body>staged</body></html>")
        page = render_preview(ContentResolver(overlay, remote), "/pricing")
        assert isinstance(page, PreviewPage)
        assert page.source == "overlay"
        assert PREVIEW_WATERMARK in page.html
        assert overlay.read("pricing.html").content == "<html><head></head><body>staged</body></html>"

    def test_tombstoned_page_is_gone(self, overlay, remote):
        overlay.delete("old.html")
        result = render_preview(ContentResolver(overlay, remote), "/old")
        assert result.kind == "Gone"
