"""Listing and deletion of a game's backups in the Drive folder."""

from __future__ import annotations

from typing import TYPE_CHECKING

from savecloud.core.metadata import to_artifact

if TYPE_CHECKING:
    from savecloud.core.folder_resolver import BackupFolderResolver
    from savecloud.core.token_manager import TokenManager
    from savecloud.models.backup_artifact import BackupArtifact

_LIST_FIELDS = "files(id, name, size, createdTime, modifiedTime, description)"


class BackupCatalog:
    def __init__(self, token_manager: TokenManager, folder_resolver: BackupFolderResolver) -> None:
        self._tokens = token_manager
        self._folders = folder_resolver

    async def list_backups(self, shop: str, object_id: str) -> list[BackupArtifact]:
        """Backups of one game, newest first."""
        session = self._tokens.require_session()
        folder_id = await self._folders.resolve()

        fingerprint = f"{shop}-{object_id}"
        escaped = fingerprint.replace("'", "\\'")
        files = await session.storage.list_files(
            f"'{folder_id}' in parents and name contains '{escaped}' and trashed=false",
            fields=_LIST_FIELDS,
            order_by="createdTime desc",
        )
        # "contains" also matches longer ids (steam-123 vs steam-1234)
        prefix = f"{fingerprint}-"
        return [to_artifact(f, shop, object_id) for f in files if f.name.startswith(prefix)]

    async def delete_backup(self, file_id: str) -> None:
        """Permanent delete; provider errors propagate untouched."""
        session = self._tokens.require_session()
        await session.storage.delete_file(file_id)
