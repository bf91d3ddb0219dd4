from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


DatabaseType = Literal["vector", "graph"]
Visibility = Literal["public", "private"]
Role = Literal["owner", "writer", "reader"]
Action = Literal["read", "write", "admin"]
InvitationStatus = Literal["pending", "accepted", "rejected", "revoked"]
NotificationType = Literal[
    "invitation_received",
    "invitation_accepted",
    "invitation_rejected",
    "invitation_revoked",
    "token_used",
    "token_revoked",
    "access_revoked",
]

DATABASE_TYPES: frozenset[str] = frozenset({"vector", "graph"})
VISIBILITIES: frozenset[str] = frozenset({"public", "private"})
TERMINAL_INVITATION_STATUSES: frozenset[str] = frozenset({"accepted", "rejected", "revoked"})


class DatabaseRecord(BaseModel):
    # Canonical registry row; name is the unique key for folders and sharing.
    name: str
    type: DatabaseType
    owner: str
    visibility: Visibility = "private"
    created_at: datetime
    last_accessed_at: datetime
    description: str | None = None
    vector_count: int = 0
    storage_size_bytes: int = 0


class PermissionGrant(BaseModel):
    # Unique per (database_name, user_address); re-granting refreshes the row.
    database_name: str
    user_address: str
    role: Role
    granted_by: str | None = None
    granted_at: datetime


class PermissionSummary(BaseModel):
    database_name: str
    total_permissions: int
    reader_count: int
    writer_count: int
    owner_count: int
    last_granted_at: datetime | None = None


class ShareInvitation(BaseModel):
    id: str
    database_name: str
    inviter_address: str
    invitee_address: str
    role: Role
    status: InvitationStatus = "pending"
    created_at: datetime
    expires_at: datetime | None = None
    accepted_at: datetime | None = None
    rejected_at: datetime | None = None
    revoked_at: datetime | None = None


class AccessToken(BaseModel):
    id: str
    token: str
    database_name: str
    issuer_address: str
    role: Role
    active: bool = True
    created_at: datetime
    expires_at: datetime
    revoked_at: datetime | None = None
    usage_count: int = 0
    max_uses: int | None = None
    # Ordered and deduplicated; usage_count tracks redemptions separately.
    used_by: list[str] = Field(default_factory=list)


class TokenRedemption(BaseModel):
    granted: bool
    role: Role
    database_name: str


class Notification(BaseModel):
    id: str
    user_address: str
    type: NotificationType
    message: str
    # Payload shape varies by type; see sharing.notifications for conventions.
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    read: bool = False
    read_at: datetime | None = None


class FolderRecord(BaseModel):
    # Path is the primary key; children are derived by path prefix.
    name: str
    path: str
    created_at: datetime
    last_modified: datetime
    file_count: int = 0
    total_size: int = 0
    files: dict[str, int] = Field(default_factory=dict)


class FolderListItem(BaseModel):
    name: str
    path: str
    type: Literal["folder"] = "folder"
    created_at: datetime
    last_modified: datetime
    file_count: int
    folder_count: int
    total_size: int


class FolderPage(BaseModel):
    items: list[FolderListItem]
    cursor: str | None = None


class FolderMetadata(BaseModel):
    created_at: datetime
    last_modified: datetime
    file_count: int
    folder_count: int
    total_size: int
    total_size_formatted: str | None = None
