"""Backup folder resolver: find-or-create the application's Drive folder."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loguru import logger

from savecloud.providers.google_drive import FOLDER_MIME_TYPE

if TYPE_CHECKING:
    from savecloud.core.token_manager import TokenManager

FOLDER_NAME = "SaveCloud Backups"


class BackupFolderResolver:
    """
    Resolves the single backup folder and memoizes its id on the session.

    Query-then-create: two processes starting cold at the same time can
    still create two folders. Within one process a lock makes the first
    resolution single-flight.
    """

    def __init__(self, token_manager: TokenManager, folder_name: str = FOLDER_NAME) -> None:
        self._tokens = token_manager
        self._folder_name = folder_name
        self._lock = asyncio.Lock()

    async def resolve(self) -> str:
        session = self._tokens.require_session()
        if session.backup_folder_id:
            return session.backup_folder_id

        async with self._lock:
            if session.backup_folder_id:
                return session.backup_folder_id

            name = self._folder_name.replace("'", "\\'")
            existing = await session.storage.list_files(
                f"name='{name}' and mimeType='{FOLDER_MIME_TYPE}' and trashed=false",
                fields="files(id, name)",
            )
            if existing:
                session.backup_folder_id = existing[0].id
                logger.debug(f"Using backup folder {session.backup_folder_id}")
            else:
                session.backup_folder_id = await session.storage.create_folder(self._folder_name)
                logger.info(f"Created backup folder '{self._folder_name}'")
            return session.backup_folder_id

    def invalidate(self) -> None:
        if self._tokens.is_configured:
            self._tokens.require_session().backup_folder_id = None
