"""Tests for URL path resolution and HTML detection.

Run: pytest tests/test_paths.py -v
Markers: paths
"""
import os

import pytest

from core.errors import NotUnderSiteRoot
from core.paths import build_url, has_html_files, relative_location, resolve_url_path

pytestmark = [pytest.mark.paths]

ROOT = os.path.join(os.sep, "Users", "me", "www.example.com")


def under(*parts):
    return os.path.join(ROOT, *parts)


class TestSameDirectory:
    def test_no_filename_is_server_root(self):
        assert resolve_url_path(ROOT, ROOT, "") == ""
        assert resolve_url_path(ROOT, ROOT, None) == ""

    def test_filename_at_root(self):
        assert resolve_url_path(ROOT, ROOT, "x.html") == "/x.html"


class TestNestedDirectory:
    def test_article_example(self):
        current = under("blog", "posts")
        assert resolve_url_path(ROOT, current, "article.html") == "/blog/posts/article.html"

    @pytest.mark.parametrize("segments", [["a"], ["a", "b"], ["a", "b", "c", "d"]])
    def test_k_segments_with_filename(self, segments):
        current = under(*segments)
        expected = "/" + "/".join(segments + ["page.html"])
        assert resolve_url_path(ROOT, current, "page.html") == expected

    @pytest.mark.parametrize("segments", [["a"], ["a", "b", "c"]])
    def test_k_segments_without_filename(self, segments):
        current = under(*segments)
        assert resolve_url_path(ROOT, current, "") == "/" + "/".join(segments)

    def test_relative_location_segments(self):
        assert relative_location(ROOT, under("blog", "posts")) == ["blog", "posts"]
        assert relative_location(ROOT, ROOT) == []

    def test_filesystem_root_contains_everything(self):
        current = os.path.join(os.sep, "home", "user")
        assert resolve_url_path(os.sep, current, "i.html") == "/home/user/i.html"


class TestNotUnderSiteRoot:
    def test_unrelated_directory(self):
        site_root = os.path.join(os.sep, "var", "www")
        current = os.path.join(os.sep, "home", "user")
        with pytest.raises(NotUnderSiteRoot) as exc:
            resolve_url_path(site_root, current, "index.html")
        assert exc.value.site_root == site_root
        assert exc.value.current_dir == current

    def test_sibling_sharing_string_prefix(self):
        site_root = os.path.join(os.sep, "var", "www")
        current = os.path.join(os.sep, "var", "www2")
        with pytest.raises(NotUnderSiteRoot):
            resolve_url_path(site_root, current, "")

    def test_parent_of_site_root(self):
        with pytest.raises(NotUnderSiteRoot):
            resolve_url_path(ROOT, os.path.dirname(ROOT), "x.html")

    def test_message_names_both_directories(self):
        with pytest.raises(NotUnderSiteRoot) as exc:
            resolve_url_path(ROOT, os.path.join(os.sep, "tmp"), "")
        assert ROOT in str(exc.value)
        assert "Current directory" in str(exc.value)


class TestNormalization:
    @pytest.mark.parametrize("current", [ROOT, under("blog"), under("blog", "posts")])
    def test_leading_separator_in_filename_is_ignored(self, current):
        assert resolve_url_path(ROOT, current, "/x.html") == resolve_url_path(ROOT, current, "x.html")

    @pytest.mark.parametrize("current", [ROOT, under("blog")])
    def test_trailing_separator_on_site_root(self, current):
        with_sep = ROOT + os.sep
        assert resolve_url_path(with_sep, current, "x.html") == resolve_url_path(ROOT, current, "x.html")
        assert resolve_url_path(with_sep, current, "") == resolve_url_path(ROOT, current, "")

    def test_relative_site_root_resolved_against_current_dir(self):
        current = under("blog", "posts")
        assert resolve_url_path("../..", current, "a.html") == "/blog/posts/a.html"
        assert resolve_url_path("..", current, "") == "/posts"

    def test_empty_site_root_yields_server_root(self):
        assert resolve_url_path(None, under("blog"), "x.html") == ""
        assert resolve_url_path("", under("blog"), "") == ""

    def test_filename_with_subdirectory(self):
        assert resolve_url_path(ROOT, under("blog"), "posts/a.html") == "/blog/posts/a.html"

    def test_always_starts_with_slash_when_non_empty(self):
        for current, name in [(ROOT, "a.html"), (under("x"), ""), (under("x", "y"), "z.htm")]:
            assert resolve_url_path(ROOT, current, name).startswith("/")


class TestBuildUrl:
    def test_server_root(self):
        assert build_url(8000) == "http://localhost:8000"

    def test_with_path(self):
        assert build_url(8003, "/blog/a.html") == "http://localhost:8003/blog/a.html"


class TestHasHtmlFiles:
    def test_html_present(self, site):
        assert has_html_files(site["root"]) is True

    def test_htm_counts(self, tmp_path):
        (tmp_path / "page.HTM").write_text("x")
        assert has_html_files(tmp_path) is True

    def test_text_only_directory(self, site):
        assert has_html_files(site["notes"]) is False

    def test_not_recursive(self, tmp_path):
        nested = tmp_path / "sub"
        nested.mkdir()
        (nested / "index.html").write_text("x")
        assert has_html_files(tmp_path) is False

    def test_directory_named_like_html_is_ignored(self, tmp_path):
        (tmp_path / "fake.html").mkdir()
        assert has_html_files(tmp_path) is False

    def test_missing_directory(self, tmp_path):
        assert has_html_files(tmp_path / "nope") is False
