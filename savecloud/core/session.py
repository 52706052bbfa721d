"""Provider client handle shared by the backup services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from savecloud.providers.base import OAuthClient, RemoteStorageProvider


@dataclass
class CloudSession:
    """
    One per process, owned by the TokenManager.

    ``backup_folder_id`` is the in-memory BackupFolderHandle cache; it is
    never persisted.
    """

    oauth: OAuthClient
    storage: RemoteStorageProvider
    backup_folder_id: str | None = None

    async def aclose(self) -> None:
        await self.oauth.aclose()
