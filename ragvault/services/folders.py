from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import ValidationError

from ragvault.core.errors import (
    AlreadyExistsError,
    FolderNotEmptyError,
    InvalidInputError,
    InvalidPathError,
    NotFoundError,
)
from ragvault.domain.entities import FolderListItem, FolderMetadata, FolderPage, FolderRecord
from ragvault.persistence.portal import StoragePortal
from ragvault.services.locks import KeyedLock
from ragvault.services.paths import (
    ROOT_PATH,
    get_ancestor_paths,
    get_folder_name,
    get_parent_path,
    is_sub_path,
    join_path,
    validate_folder_name,
    validate_path,
)
from ragvault.services.registry import DatabaseRegistry


logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def humanize_size(num_bytes: int) -> str:
    size = float(num_bytes)
    unit = 0
    while size >= 1024 and unit < len(_SIZE_UNITS) - 1:
        size /= 1024
        unit += 1
    return f"{size:.2f} {_SIZE_UNITS[unit]}"


def _portal_key(database_name: str) -> str:
    return f"folders/{database_name}"


class FolderHierarchy:
    """Virtual folders per database, stored as a flat ``path -> FolderRecord`` map.

    Parent/child relations come from path prefixes, so a move or rename is a
    key rewrite of the subtree. Each folder counts only its own files; the
    recursive view is computed on demand by ``get_folder_metadata``.
    """

    def __init__(
        self,
        *,
        registry: DatabaseRegistry | None = None,
        portal: StoragePortal | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._namespaces: dict[str, dict[str, FolderRecord]] = {}
        self._locks = KeyedLock()
        self._registry = registry
        self._portal = portal
        self._now = time_provider or _utc_now

    def _check_database(self, database_name: str) -> str:
        cleaned = (database_name or "").strip()
        if not cleaned:
            raise InvalidInputError("Database name is required")
        if self._registry is not None and not self._registry.exists(cleaned):
            raise NotFoundError(f"Database not found: {cleaned}", name=cleaned)
        return cleaned

    def _namespace(self, database_name: str) -> dict[str, FolderRecord]:
        folders = self._namespaces.get(database_name)
        if folders is None:
            now = self._now()
            folders = {ROOT_PATH: FolderRecord(name="", path=ROOT_PATH, created_at=now, last_modified=now)}
            self._namespaces[database_name] = folders
        return folders

    def _find(self, database_name: str, path: str) -> FolderRecord:
        folder = self._namespaces.get(database_name, {}).get(path)
        if folder is None:
            if path == ROOT_PATH:
                # Root always exists conceptually, even before the first folder.
                return self._namespace(database_name)[ROOT_PATH]
            raise NotFoundError(f"Folder not found: {path}", database_name=database_name, path=path)
        return folder

    def _children(self, folders: dict[str, FolderRecord], path: str) -> list[FolderRecord]:
        return sorted(
            (folder for folder in folders.values() if get_parent_path(folder.path) == path),
            key=lambda folder: folder.name,
        )

    def _subtree(self, folders: dict[str, FolderRecord], path: str) -> list[str]:
        return [candidate for candidate in folders if is_sub_path(candidate, path)]

    def _touch_ancestors(self, folders: dict[str, FolderRecord], path: str, now: datetime) -> None:
        for ancestor in get_ancestor_paths(path):
            folder = folders.get(ancestor)
            if folder is not None:
                folder.last_modified = now

    def _list_item(self, folders: dict[str, FolderRecord], folder: FolderRecord) -> FolderListItem:
        return FolderListItem(
            name=folder.name,
            path=folder.path,
            created_at=folder.created_at,
            last_modified=folder.last_modified,
            file_count=folder.file_count,
            folder_count=len(self._children(folders, folder.path)),
            total_size=folder.total_size,
        )

    def _create_missing(self, folders: dict[str, FolderRecord], path: str, now: datetime) -> None:
        for target in [*get_ancestor_paths(path), path]:
            if target not in folders:
                folders[target] = FolderRecord(
                    name=get_folder_name(target), path=target, created_at=now, last_modified=now
                )

    def _relocate(self, folders: dict[str, FolderRecord], source: str, dest: str, now: datetime) -> int:
        # Rewrite the subtree keys; children keep their own timestamps.
        moved = [source, *self._subtree(folders, source)]
        records = {path: folders.pop(path) for path in moved}
        for old_path, folder in records.items():
            new_path = dest + old_path[len(source):]
            folder.path = new_path
            folder.name = get_folder_name(new_path)
            folders[new_path] = folder
        folders[dest].last_modified = now
        self._touch_ancestors(folders, source, now)
        self._touch_ancestors(folders, dest, now)
        return len(moved)

    async def create_folder(self, database_name: str, path: str) -> FolderRecord:
        db = self._check_database(database_name)
        normalized = validate_path(path)
        if normalized == ROOT_PATH:
            raise AlreadyExistsError("Root folder already exists", database_name=db, path=normalized)
        async with self._locks.hold(db):
            folders = self._namespace(db)
            if normalized in folders:
                raise AlreadyExistsError(
                    f"Folder already exists: {normalized}", database_name=db, path=normalized
                )
            now = self._now()
            self._create_missing(folders, normalized, now)
            self._touch_ancestors(folders, normalized, now)
            created = folders[normalized].model_copy(deep=True)
        logger.info("folder_created database=%s path=%s", db, normalized)
        return created

    async def list_folder(self, database_name: str, path: str = ROOT_PATH) -> list[FolderListItem]:
        db = self._check_database(database_name)
        normalized = validate_path(path)
        async with self._locks.hold(db):
            folders = self._namespaces.get(db)
            if folders is None:
                if normalized == ROOT_PATH:
                    return []
                raise NotFoundError(f"Folder not found: {normalized}", database_name=db, path=normalized)
            if normalized not in folders:
                raise NotFoundError(f"Folder not found: {normalized}", database_name=db, path=normalized)
            return [self._list_item(folders, child) for child in self._children(folders, normalized)]

    async def list_folder_page(
        self,
        database_name: str,
        path: str = ROOT_PATH,
        *,
        limit: int,
        cursor: str | None = None,
    ) -> FolderPage:
        if limit < 1:
            raise InvalidInputError("limit must be at least 1", limit=limit)
        try:
            start = int(cursor) if cursor else 0
        except ValueError as exc:
            raise InvalidInputError("Invalid cursor", cursor=cursor) from exc
        if start < 0:
            raise InvalidInputError("Invalid cursor", cursor=cursor)
        items = await self.list_folder(database_name, path)
        end = start + limit
        return FolderPage(items=items[start:end], cursor=str(end) if end < len(items) else None)

    async def delete_folder(self, database_name: str, path: str, *, recursive: bool = False) -> int:
        """Delete a folder and return how many folder records were removed.

        Deleting ``/`` needs ``recursive=True`` and clears the whole namespace.
        """
        db = self._check_database(database_name)
        normalized = validate_path(path)
        async with self._locks.hold(db):
            if normalized == ROOT_PATH:
                if not recursive:
                    raise InvalidPathError("Cannot delete root folder", database_name=db, path=normalized)
                removed = len(self._namespaces.pop(db, {}))
                logger.info("folder_namespace_cleared database=%s folders=%s", db, removed)
                return removed
            folders = self._namespaces.get(db, {})
            folder = folders.get(normalized)
            if folder is None:
                raise NotFoundError(f"Folder not found: {normalized}", database_name=db, path=normalized)
            descendants = self._subtree(folders, normalized)
            if not recursive and (descendants or folder.files):
                raise FolderNotEmptyError(
                    f"Folder not empty: {normalized}", database_name=db, path=normalized
                )
            for doomed in [normalized, *descendants]:
                del folders[doomed]
            self._touch_ancestors(folders, normalized, self._now())
        logger.info("folder_deleted database=%s path=%s removed=%s", db, normalized, len(descendants) + 1)
        return len(descendants) + 1

    async def move_folder(self, database_name: str, source_path: str, dest_path: str) -> FolderRecord:
        db = self._check_database(database_name)
        source = validate_path(source_path)
        dest = validate_path(dest_path)
        if source == ROOT_PATH or dest == ROOT_PATH:
            raise InvalidPathError("Cannot move the root folder", database_name=db, source=source, dest=dest)
        if source == dest:
            raise InvalidPathError("Cannot move folder to itself", database_name=db, path=source)
        if is_sub_path(dest, source):
            raise InvalidPathError(
                "Cannot move folder into its own subfolder", database_name=db, source=source, dest=dest
            )
        async with self._locks.hold(db):
            folders = self._namespaces.get(db, {})
            if source not in folders:
                raise NotFoundError(f"Folder not found: {source}", database_name=db, path=source)
            if dest in folders:
                raise AlreadyExistsError(f"Folder already exists: {dest}", database_name=db, path=dest)
            # The deepest folder of the subtree must still fit under the depth limit.
            for old_path in self._subtree(folders, source):
                validate_path(dest + old_path[len(source):])
            now = self._now()
            parent = get_parent_path(dest)
            if parent is not None and parent != ROOT_PATH:
                self._create_missing(folders, parent, now)
            moved = self._relocate(folders, source, dest, now)
            result = folders[dest].model_copy(deep=True)
        logger.info("folder_moved database=%s source=%s dest=%s folders=%s", db, source, dest, moved)
        return result

    async def rename_folder(self, database_name: str, path: str, new_name: str) -> FolderRecord:
        db = self._check_database(database_name)
        normalized = validate_path(path)
        if normalized == ROOT_PATH:
            raise InvalidPathError("Cannot rename the root folder", database_name=db, path=normalized)
        name = validate_folder_name(new_name)
        dest = join_path(get_parent_path(normalized) or ROOT_PATH, name)
        async with self._locks.hold(db):
            folders = self._namespaces.get(db, {})
            if normalized not in folders:
                raise NotFoundError(f"Folder not found: {normalized}", database_name=db, path=normalized)
            if dest == normalized:
                return folders[normalized].model_copy(deep=True)
            if dest in folders:
                raise AlreadyExistsError(f"Folder already exists: {dest}", database_name=db, path=dest)
            self._relocate(folders, normalized, dest, self._now())
            result = folders[dest].model_copy(deep=True)
        logger.info("folder_renamed database=%s path=%s new_path=%s", db, normalized, dest)
        return result

    async def get_folder_metadata(
        self,
        database_name: str,
        path: str = ROOT_PATH,
        *,
        recursive: bool = False,
        format_size: bool = False,
    ) -> FolderMetadata:
        db = self._check_database(database_name)
        normalized = validate_path(path)
        async with self._locks.hold(db):
            folders = self._namespaces.get(db)
            if folders is None and normalized != ROOT_PATH:
                raise NotFoundError(f"Folder not found: {normalized}", database_name=db, path=normalized)
            folder = self._find(db, normalized)
            folders = self._namespaces[db]
            if recursive:
                scope = [folder, *(folders[sub] for sub in self._subtree(folders, normalized))]
                file_count = sum(item.file_count for item in scope)
                total_size = sum(item.total_size for item in scope)
                folder_count = len(scope) - 1
            else:
                file_count = folder.file_count
                total_size = folder.total_size
                folder_count = len(self._children(folders, normalized))
            return FolderMetadata(
                created_at=folder.created_at,
                last_modified=folder.last_modified,
                file_count=file_count,
                folder_count=folder_count,
                total_size=total_size,
                total_size_formatted=humanize_size(total_size) if format_size else None,
            )

    async def add_file(self, database_name: str, path: str, name: str, size: int) -> FolderRecord:
        db = self._check_database(database_name)
        normalized = validate_path(path)
        if not name or not name.strip():
            raise InvalidInputError("File name is required", database_name=db, path=normalized)
        if size < 0:
            raise InvalidInputError("File size cannot be negative", database_name=db, name=name)
        async with self._locks.hold(db):
            folder = self._find(db, normalized)
            previous = folder.files.get(name)
            if previous is None:
                folder.file_count += 1
            # Re-adding a name replaces the file and its size.
            folder.total_size += size - (previous or 0)
            folder.files[name] = size
            now = self._now()
            folder.last_modified = now
            self._touch_ancestors(self._namespaces[db], normalized, now)
            return folder.model_copy(deep=True)

    async def remove_file(self, database_name: str, path: str, name: str) -> int:
        db = self._check_database(database_name)
        normalized = validate_path(path)
        async with self._locks.hold(db):
            folder = self._find(db, normalized)
            if name not in folder.files:
                raise NotFoundError(
                    f"File not found: {name}", database_name=db, path=normalized, name=name
                )
            size = folder.files.pop(name)
            folder.file_count = max(0, folder.file_count - 1)
            folder.total_size = max(0, folder.total_size - size)
            now = self._now()
            folder.last_modified = now
            self._touch_ancestors(self._namespaces[db], normalized, now)
            return size

    def serialize(self, database_name: str) -> dict[str, Any]:
        folders = self._namespaces.get(database_name, {})
        return {
            "version": SNAPSHOT_VERSION,
            "folders": {path: folders[path].model_dump(mode="json") for path in sorted(folders)},
        }

    def deserialize(self, database_name: str, data: dict[str, Any]) -> int:
        version = data.get("version")
        if version != SNAPSHOT_VERSION:
            raise InvalidInputError(
                f"Unsupported folder snapshot version: {version}", database_name=database_name
            )
        try:
            records = {
                path: FolderRecord.model_validate(payload)
                for path, payload in (data.get("folders") or {}).items()
            }
        except ValidationError as exc:
            raise InvalidInputError(
                "Failed to deserialize folder hierarchy", database_name=database_name, detail=str(exc)
            ) from exc
        for path, record in records.items():
            if validate_path(path) != record.path:
                raise InvalidInputError(
                    "Folder snapshot key does not match record path", database_name=database_name, path=path
                )
        # Replace wholesale; a snapshot is the full namespace.
        self._namespaces.pop(database_name, None)
        namespace = self._namespace(database_name)
        namespace.update(records)
        return len(records)

    async def save(self, database_name: str) -> None:
        if self._portal is None:
            raise InvalidInputError("No storage portal configured for folders", database_name=database_name)
        db = self._check_database(database_name)
        async with self._locks.hold(db):
            snapshot = self.serialize(db)
            await self._portal.put(_portal_key(db), snapshot)
        logger.info("folders_saved database=%s folders=%s", db, len(snapshot["folders"]))

    async def load(self, database_name: str) -> bool:
        if self._portal is None:
            raise InvalidInputError("No storage portal configured for folders", database_name=database_name)
        db = self._check_database(database_name)
        async with self._locks.hold(db):
            snapshot = await self._portal.get(_portal_key(db))
            if snapshot is None:
                return False
            loaded = self.deserialize(db, snapshot)
        logger.info("folders_loaded database=%s folders=%s", db, loaded)
        return True

    async def clear_database(self, database_name: str) -> int:
        # Bypasses the registry check so callers can clean up after unregister.
        db = (database_name or "").strip()
        async with self._locks.hold(db):
            removed = len(self._namespaces.pop(db, {}))
            if self._portal is not None:
                await self._portal.delete(_portal_key(db))
        return removed
