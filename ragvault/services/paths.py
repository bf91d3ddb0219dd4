from __future__ import annotations

import re

from ragvault.core.config import get_settings
from ragvault.core.errors import InvalidNameError, InvalidPathError, MaxDepthExceededError


ROOT_PATH = "/"

_FOLDER_NAME_RE = re.compile(r"^[A-Za-z0-9\-_.() ]+$")
_SLASHES_RE = re.compile(r"/{2,}")


def normalize_path(path: str | None) -> str:
    # Canonical form: single leading slash, no repeated or trailing slashes.
    if path is None:
        return ROOT_PATH
    cleaned = path.strip()
    if not cleaned:
        return ROOT_PATH
    cleaned = _SLASHES_RE.sub("/", cleaned)
    if not cleaned.startswith("/"):
        cleaned = f"/{cleaned}"
    if len(cleaned) > 1:
        cleaned = cleaned.rstrip("/") or ROOT_PATH
    return cleaned


def validate_folder_name(name: str | None, *, max_length: int | None = None) -> str:
    limit = max_length if max_length is not None else get_settings().folder_name_max_length
    trimmed = (name or "").strip()
    if not trimmed:
        raise InvalidNameError("Folder name cannot be empty", name=name)
    if trimmed in {".", ".."}:
        raise InvalidNameError(f"Folder name '{trimmed}' is reserved", name=trimmed)
    if len(trimmed) > limit:
        raise InvalidNameError(
            f"Folder name exceeds {limit} characters", name=trimmed[:32], max_length=limit
        )
    if not _FOLDER_NAME_RE.match(trimmed):
        raise InvalidNameError(f"Folder name '{trimmed}' contains invalid characters", name=trimmed)
    return trimmed


def split_path(path: str) -> list[str]:
    normalized = normalize_path(path)
    if normalized == ROOT_PATH:
        return []
    return normalized[1:].split("/")


def validate_path(path: str | None, *, max_depth: int | None = None) -> str:
    """Validate a folder path and return its normalized form.

    Raises ``InvalidPathError`` for empty paths or ``..`` traversal,
    ``MaxDepthExceededError`` when nested deeper than ``max_depth`` (default
    from settings), and ``InvalidPathError`` naming the first segment that
    fails ``validate_folder_name``.
    """
    if path is None or not path.strip():
        raise InvalidPathError("Path cannot be empty", path=path)
    normalized = normalize_path(path)
    if normalized == ROOT_PATH:
        return normalized

    segments = split_path(normalized)
    for segment in segments:
        if ".." in segment:
            raise InvalidPathError("Path traversal is not allowed", path=normalized, segment=segment)

    limit = max_depth if max_depth is not None else get_settings().folder_max_depth
    if len(segments) > limit:
        raise MaxDepthExceededError(
            f"Path depth {len(segments)} exceeds maximum of {limit}",
            path=normalized,
            depth=len(segments),
            max_depth=limit,
        )

    for segment in segments:
        try:
            validate_folder_name(segment)
        except InvalidNameError as exc:
            raise InvalidPathError(
                f"Invalid path segment '{segment}': {exc.message}", path=normalized, segment=segment
            ) from exc
    return normalized


def get_parent_path(path: str) -> str | None:
    # Root has no parent.
    segments = split_path(path)
    if not segments:
        return None
    if len(segments) == 1:
        return ROOT_PATH
    return "/" + "/".join(segments[:-1])


def get_ancestor_paths(path: str) -> list[str]:
    # Ordered root-first and excluding the path itself.
    segments = split_path(path)
    if not segments:
        return []
    ancestors = [ROOT_PATH]
    for depth in range(1, len(segments)):
        ancestors.append("/" + "/".join(segments[:depth]))
    return ancestors


def join_path(parent: str, *names: str) -> str:
    return normalize_path("/".join([normalize_path(parent), *names]))


def get_folder_name(path: str) -> str:
    segments = split_path(path)
    return segments[-1] if segments else ""


def is_sub_path(child: str, parent: str) -> bool:
    child_normalized = normalize_path(child)
    parent_normalized = normalize_path(parent)
    if child_normalized == parent_normalized:
        return False
    if parent_normalized == ROOT_PATH:
        return True
    return child_normalized.startswith(f"{parent_normalized}/")
