"""Tests for canonical source keys."""

from __future__ import annotations

import pytest

from quarry.pathing import (
    apply_project_prefix,
    is_path_under_root,
    is_uri,
    normalize_for_storage,
    normalize_relative_path,
    project_of,
)


@pytest.mark.parametrize("value,expected", [
    ("https://example.com/page", True),
    ("http://example.com", True),
    ("file:///tmp/a.md", False),
    ("C:\\docs\\a.md", False),
    ("C:/docs/a.md", False),
    ("docs/a.md", False),
    ("/abs/path.md", False),
])
def test_is_uri(value, expected):
    assert is_uri(value) is expected


def test_normalize_relative_path():
    assert normalize_relative_path(".\\docs\\a.md") == "docs/a.md"
    assert normalize_relative_path("././docs/a.md") == "docs/a.md"


def test_is_path_under_root(tmp_path):
    root = tmp_path / "repo"
    assert is_path_under_root(str(root / "docs" / "a.md"), str(root))
    assert is_path_under_root(str(root), str(root))
    assert not is_path_under_root(str(tmp_path / "repo-other" / "a.md"), str(root))
    assert not is_path_under_root("", str(root))


def test_is_path_under_root_case_insensitive(tmp_path):
    root = tmp_path / "Repo"
    assert is_path_under_root(str(tmp_path / "repo" / "a.md"), str(root))


# --- normalize_for_storage ---

def test_absolute_path_under_root_gets_project_prefix(tmp_path):
    root = tmp_path / "handbook"
    assert normalize_for_storage(str(root / "docs" / "a.md"), str(root)) == "handbook/docs/a.md"


def test_relative_path_gets_project_prefix(tmp_path):
    root = tmp_path / "handbook"
    assert normalize_for_storage("./docs/a.md", str(root)) == "handbook/docs/a.md"


def test_already_prefixed_key_is_stable(tmp_path):
    root = tmp_path / "handbook"
    key = normalize_for_storage("docs/a.md", str(root))
    assert normalize_for_storage(key, str(root)) == key


@pytest.mark.parametrize("folder", ["app", "workspace", "src", "repo"])
def test_generic_root_folder_is_not_a_prefix(tmp_path, folder):
    root = tmp_path / folder
    assert normalize_for_storage(str(root / "docs" / "a.md"), str(root)) == "docs/a.md"


def test_uri_returned_verbatim(tmp_path):
    url = "  https://example.com/Guide?x=1  "
    assert normalize_for_storage(url, str(tmp_path)) == "https://example.com/Guide?x=1"


def test_moved_checkout_reanchored_on_project_folder(tmp_path):
    root = tmp_path / "new" / "handbook"
    old = "/old/location/handbook/docs/a.md"
    assert normalize_for_storage(old, str(root)) == "handbook/docs/a.md"


def test_unrelated_absolute_path_stays_absolute(tmp_path):
    root = tmp_path / "handbook"
    other = str(tmp_path / "elsewhere" / "a.md")
    assert normalize_for_storage(other, str(root)) == other.replace("\\", "/")


def test_blank_source_path_unchanged(tmp_path):
    assert normalize_for_storage("", str(tmp_path)) == ""


# --- apply_project_prefix ---

def test_apply_project_prefix_adds_prefix():
    assert apply_project_prefix("docs/a.md", "web") == "web/docs/a.md"


def test_apply_project_prefix_skips_existing_prefix():
    assert apply_project_prefix("Web/docs/a.md", "web") == "Web/docs/a.md"


def test_apply_project_prefix_none_or_blank():
    assert apply_project_prefix("docs/a.md", None) == "docs/a.md"
    assert apply_project_prefix("docs/a.md", " / ") == "docs/a.md"


def test_apply_project_prefix_leaves_urls():
    assert apply_project_prefix("https://example.com/a", "web") == "https://example.com/a"


# --- project_of ---

@pytest.mark.parametrize("key,expected", [
    ("Handbook/docs/a.md", "handbook"),
    ("https://Example.com/page", "example.com"),
    ("/abs/path.md", "abs"),
    ("C:/docs/a.md", "docs"),
    ("   ", None),
])
def test_project_of(key, expected):
    assert project_of(key) == expected
