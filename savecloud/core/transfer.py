"""Transfer pipeline: upload packed saves to Drive and restore them from it."""

from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from savecloud.core.events import LoggingNotifier, download_complete_event, upload_complete_event
from savecloud.core.locks import GameLocks
from savecloud.core.metadata import parse_metadata
from savecloud.core.packager import ARCHIVE_MIME_TYPE, extract_archive
from savecloud.core.path_resolver import normalize_path
from savecloud.exceptions import LocalIOFailure
from savecloud.utils import remove_path

if TYPE_CHECKING:
    from savecloud.core.events import NotificationChannel
    from savecloud.core.folder_resolver import BackupFolderResolver
    from savecloud.core.packager import ArchivePackager
    from savecloud.core.session import CloudSession
    from savecloud.core.token_manager import TokenManager
    from savecloud.models.backup_artifact import BackupMetadata


class TransferPipeline:
    """
    Moves backup archives between the local disk and the Drive backup folder.

    Network errors are not retried here; they reach the caller unchanged.
    Operations on the same game are serialized within the process.
    """

    def __init__(
        self,
        token_manager: TokenManager,
        folder_resolver: BackupFolderResolver,
        packager: ArchivePackager,
        notifier: NotificationChannel | None = None,
        locks: GameLocks | None = None,
    ) -> None:
        self._tokens = token_manager
        self._folders = folder_resolver
        self._packager = packager
        self._notifier = notifier or LoggingNotifier()
        self._locks = locks or GameLocks()

    # ── Upload ──

    async def upload_save_game(
        self,
        shop: str,
        object_id: str,
        download_option_title: str | None = None,
        label: str | None = None,
        wine_prefix_path: str | None = None,
    ) -> str:
        """Capture, pack and upload the current saves of a game. Returns the remote file id."""
        self._tokens.require_session()

        async with self._locks.lock(shop, object_id):
            staging = self._packager.staging_dir(shop, object_id)
            archive = self._packager.new_archive_path()
            try:
                packed = await self._packager.pack(
                    shop,
                    object_id,
                    wine_prefix_path=wine_prefix_path,
                    download_option_title=download_option_title,
                    label=label,
                    archive_path=archive,
                )
                folder_id = await self._folders.resolve()
                file_id = await self.upload(packed.archive_path, packed.metadata, folder_id)
                self._notifier.emit(upload_complete_event(object_id, shop))
                return file_id
            finally:
                remove_path(archive)
                remove_path(staging)

    async def upload(self, archive_path: Path, metadata: BackupMetadata, folder_id: str) -> str:
        """Create the remote file with the metadata JSON as its description."""
        session = self._tokens.require_session()
        file_name = f"{metadata.shop}-{metadata.object_id}-{int(time.time() * 1000)}.tar"
        try:
            file_id = await session.storage.create_file(
                file_name,
                folder_id,
                json.dumps(metadata.to_dict()),
                archive_path,
                ARCHIVE_MIME_TYPE,
            )
        except OSError as e:
            raise LocalIOFailure(f"Failed to read archive {archive_path}: {e}") from e
        logger.info(f"Uploaded {file_name} ({file_id})")
        return file_id

    # ── Download / restore ──

    async def download_backup(
        self,
        shop: str,
        object_id: str,
        file_id: str,
        wine_prefix_path: str | None = None,
    ) -> None:
        """
        Download a backup and hand it to the capture tool for restore.

        ``wine_prefix_path`` is the game's current prefix; the prefix
        recorded in the backup metadata is passed alongside it. The staging
        directory is left for the capture tool, only the archive is removed.
        """
        session = self._tokens.require_session()

        async with self._locks.lock(shop, object_id):
            remote = await session.storage.get_file(file_id, fields="description")
            metadata = parse_metadata(remote.description)

            archive = self._packager.new_archive_path()
            staging = self._packager.staging_dir(shop, object_id)
            try:
                await self._download_to(session, file_id, archive)

                if staging.exists():
                    remove_path(staging)
                await asyncio.to_thread(extract_archive, archive, staging)

                await self._packager.capture_tool.restore(
                    staging,
                    object_id,
                    normalize_path(metadata.get("homeDir", "")),
                    wine_prefix_path,
                    metadata.get("winePrefixPath"),
                )
                self._notifier.emit(download_complete_event(object_id, shop))
                logger.info(f"Restored backup {file_id} for {shop}/{object_id}")
            finally:
                remove_path(archive)

    @staticmethod
    async def _download_to(session: CloudSession, file_id: str, archive: Path) -> None:
        try:
            archive.parent.mkdir(parents=True, exist_ok=True)
            with open(archive, "wb") as f:
                async for chunk in session.storage.iter_file_content(file_id):
                    await asyncio.to_thread(f.write, chunk)
        except OSError as e:
            raise LocalIOFailure(f"Failed to write archive {archive}: {e}") from e
