from __future__ import annotations

from typing import Any


class RagVaultError(Exception):
    """Base error for ragvault.

    Every error carries a stable ``code`` plus the identifiers needed to build an
    actionable message (database name, path, invitation id, ...).
    """

    code = "RAGVAULT_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.context}


class InvalidInputError(RagVaultError):
    """Empty or malformed names, paths, or missing required fields."""

    code = "INVALID_INPUT"


class InvalidNameError(InvalidInputError):
    """Folder name failed validation."""

    code = "INVALID_NAME"


class InvalidPathError(InvalidInputError):
    """Folder path failed validation."""

    code = "INVALID_PATH"


class MaxDepthExceededError(InvalidPathError):
    """Folder path is nested deeper than the configured limit."""

    code = "MAX_DEPTH_EXCEEDED"


class FolderNotEmptyError(InvalidInputError):
    """Non-recursive delete of a folder that still has children."""

    code = "FOLDER_NOT_EMPTY"


class NotFoundError(RagVaultError):
    """Database, folder, invitation, token or notification is absent."""

    code = "NOT_FOUND"


class AlreadyExistsError(RagVaultError):
    """Duplicate database or folder."""

    code = "ALREADY_EXISTS"


class ForbiddenError(RagVaultError):
    """Actor lacks the required role or is not the resource owner/recipient."""

    code = "FORBIDDEN"


class AlreadyTerminalError(RagVaultError):
    """State transition attempted on a terminal invitation."""

    code = "ALREADY_TERMINAL"


class InvitationExpiredError(RagVaultError):
    """Invitation expired before it was accepted."""

    code = "INVITATION_EXPIRED"


class AccessTokenError(RagVaultError):
    """Access token cannot be redeemed."""

    code = "TOKEN_ERROR"


class TokenInvalidError(AccessTokenError):
    """Unknown or inactive access token."""

    code = "TOKEN_INVALID"


class TokenExpiredError(AccessTokenError):
    """Access token is past its expiry."""

    code = "TOKEN_EXPIRED"


class TokenExhaustedError(AccessTokenError):
    """Access token reached its usage limit."""

    code = "TOKEN_EXHAUSTED"


class EmbeddingProviderError(RagVaultError):
    """Embedding provider returned a malformed response."""

    code = "EMBEDDING_PROVIDER_ERROR"


class BatchAbortedError(RagVaultError):
    """Bulk operation stopped at a failing batch (continue_on_error disabled).

    ``result`` holds everything that completed before the abort; prior batches
    are never rolled back.
    """

    code = "BATCH_ABORTED"

    def __init__(
        self,
        message: str,
        *,
        batch_index: int,
        batch_count: int,
        cause: BaseException,
        result: Any = None,
    ) -> None:
        super().__init__(message, batch_index=batch_index, batch_count=batch_count, cause=str(cause))
        self.batch_index = batch_index
        self.batch_count = batch_count
        self.cause = cause
        self.result = result
