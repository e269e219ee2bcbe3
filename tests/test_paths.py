"""
Path normalization and protected path guard tests.
"""

import pytest

from shadowstage.core import config
from shadowstage.core.errors import InvalidPath, ProtectedPath
from shadowstage.core.paths import (
    PROTECTED_CORE_PATHS,
    classify_risk,
    guard_stage_write,
    is_protected_path,
    protected_override_allowed,
    require_safe_path,
    safe_path,
)


class TestSafePath:

    @pytest.mark.parametrize("raw,expected", [
        ("pricing.html", "pricing.html"),
        ("/pricing.html", "pricing.html"),
        ("///blog/post.html", "blog/post.html"),
        ("  css/site.css  ", "css/site.css"),
        ("admin\\hub.js", "admin/hub.js"),
        ("a_b-c.1.html", "a_b-c.1.html"),
    ])
    def test_accepts_and_canonicalizes(self, raw, expected):
        assert safe_path(raw) == expected

    @pytest.mark.parametrize("raw", [
        "", "   ", None, "../etc/passwd", "blog/../../x.html", "a b.html", "page?.html", "x;rm.html", "%2e%2e/x",
    ])
    def test_rejects_unsafe_paths(self, raw):
        assert safe_path(raw) == ""

    def test_require_safe_path_raises_invalid_path(self):
        with pytest.raises(InvalidPath) as exc_info:
            require_safe_path("../secret")
        assert exc_info.value.status_code == 400
        assert exc_info.value.kind == "InvalidPath"

    def test_require_safe_path_returns_normalized(self):
        assert require_safe_path("/store.html") == "store.html"


class TestProtectedPathGuard:

    @pytest.mark.parametrize("path", sorted(PROTECTED_CORE_PATHS))
    def test_every_protected_path_is_refused_for_write_and_delete(self, path):
        assert is_protected_path(path)
        with pytest.raises(ProtectedPath):
            guard_stage_write(path, "write")
        with pytest.raises(ProtectedPath) as exc_info:
            guard_stage_write(path, "delete")
        assert "deleted" in exc_info.value.message

    def test_ordinary_path_passes(self):
        guard_stage_write("pricing.html")
        assert not is_protected_path("admin/hub.js")

    def test_override_requires_flag_and_exact_phrase(self):
        phrase = config.CONFIRMATION_PHRASE
        assert protected_override_allowed(True, phrase)
        assert not protected_override_allowed(False, phrase)
        assert not protected_override_allowed("true", phrase)
        assert not protected_override_allowed(True, phrase.upper())
        assert not protected_override_allowed(True, f" {phrase}")
        assert not protected_override_allowed(True, "")


class TestRiskClassification:

    def test_buckets(self):
        assert classify_risk("worker.js") == "core-shell"
        assert classify_risk("admin/ccos.js") == "core-shell"
        assert classify_risk("admin/hub.js") == "admin"
        assert classify_risk("css/site.css") == "styling"
        assert classify_risk("pricing.html") == "normal"
