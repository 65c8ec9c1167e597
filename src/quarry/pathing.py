"""Canonical storage keys for indexed sources.

Every document is stored under one string key. File paths are converted to
project-relative, forward-slash keys prefixed with the project folder name
(``myrepo/docs/setup.md``) so that the same file indexed from different
working directories, or from a moved checkout, maps to the same row. URLs
and other absolute URIs are stored verbatim.
"""

from __future__ import annotations

import os
import posixpath
import re
import urllib.parse

# Folder names that are runtime working directories (containers, CI), not
# project names, so they are never used as a key prefix.
_GENERIC_PROJECT_FOLDERS: frozenset[str] = frozenset(
    ["app", "workspace", "work", "src", "repo", "project", "projects", "code"]
)

_DRIVE_RE = re.compile(r"^[A-Za-z]:[\\/]")


def is_uri(value: str) -> bool:
    """Return True for absolute non-file URIs such as ``https://host/page``."""
    if _DRIVE_RE.match(value):
        return False
    parsed = urllib.parse.urlparse(value)
    return len(parsed.scheme) > 1 and parsed.scheme.lower() != "file"


def normalize_absolute_path(path: str) -> str:
    """Return *path* as an absolute, normalised, forward-slash path."""
    return os.path.abspath(os.path.expanduser(path)).replace("\\", "/")


def normalize_relative_path(path: str) -> str:
    """Convert separators to ``/`` and drop a leading ``./``."""
    normalized = path.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def is_path_under_root(path: str, root: str) -> bool:
    """Case-insensitive check that *path* is *root* or lies beneath it."""
    if not path.strip() or not root.strip():
        return False
    normalized_path = normalize_absolute_path(path).rstrip("/").lower()
    normalized_root = normalize_absolute_path(root).rstrip("/").lower()
    if not normalized_path.startswith(normalized_root):
        return False
    return (
        len(normalized_path) == len(normalized_root)
        or normalized_path[len(normalized_root)] == "/"
    )


def normalize_for_storage(source_path: str, project_root: str) -> str:
    """Return the canonical storage key for *source_path*.

    Args:
        source_path: Caller-supplied path, URL or synthetic key.
        project_root: Directory that relative keys are expressed against.

    Returns:
        URIs unchanged (trimmed); paths under *project_root* as
        ``<project>/<relative>``; absolute paths outside the root either
        re-anchored on a ``/<project>/`` segment or left absolute.
    """
    if not source_path or not source_path.strip():
        return source_path

    trimmed = source_path.strip()
    if is_uri(trimmed):
        return trimmed

    root = normalize_absolute_path(project_root)
    project_folder = posixpath.basename(root.rstrip("/"))

    if os.path.isabs(trimmed) or _DRIVE_RE.match(trimmed):
        absolute = normalize_absolute_path(trimmed)
        if is_path_under_root(absolute, root):
            relative = posixpath.relpath(absolute, root)
            return _prefix_with_project(normalize_relative_path(relative), project_folder)

        fallback = _relative_by_project_folder(absolute, project_folder)
        if fallback is not None:
            return _prefix_with_project(fallback, project_folder)
        return absolute

    return _prefix_with_project(normalize_relative_path(trimmed), project_folder)


def apply_project_prefix(source_key: str, project_name: str | None) -> str:
    """Prefix *source_key* with an explicit *project_name* unless already present.

    URIs are returned unchanged.
    """
    if not source_key or not source_key.strip() or is_uri(source_key):
        return source_key
    name = (project_name or "").strip().replace("\\", "/").strip("/")
    if not name:
        return source_key
    if source_key.lower() == name.lower() or source_key.lower().startswith(f"{name.lower()}/"):
        return source_key
    return f"{name}/{source_key}"


def project_of(source_key: str) -> str | None:
    """Return the project a stored key belongs to (URL host or first segment)."""
    key = source_key.strip()
    if not key:
        return None
    if is_uri(key):
        host = urllib.parse.urlparse(key).hostname
        return host.lower() if host else None
    normalized = key.replace("\\", "/")
    if _DRIVE_RE.match(normalized):
        normalized = normalized[3:]
    segment = normalized.lstrip("/").split("/", 1)[0]
    return segment.lower() or None


def _relative_by_project_folder(absolute: str, project_folder: str) -> str | None:
    """Recover a relative key by locating ``/<project_folder>/`` in *absolute*."""
    if not project_folder:
        return None
    marker = f"/{project_folder.lower()}/"
    index = absolute.lower().find(marker)
    if index < 0:
        return None
    start = index + len(marker)
    if start >= len(absolute):
        return None
    return normalize_relative_path(absolute[start:])


def _prefix_with_project(relative: str, project_folder: str) -> str:
    if not project_folder or not relative.strip():
        return relative
    if project_folder.lower() in _GENERIC_PROJECT_FOLDERS:
        return relative
    prefix = f"{project_folder.lower()}/"
    if relative.lower() == project_folder.lower() or relative.lower().startswith(prefix):
        return relative
    return f"{project_folder}/{relative}"
