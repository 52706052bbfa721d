"""Local backup store: tar backups with sidecar JSON metadata in a plain folder."""

from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from savecloud.core.events import LoggingNotifier, download_complete_event, upload_complete_event
from savecloud.core.locks import GameLocks
from savecloud.core.metadata import parse_metadata
from savecloud.core.packager import extract_archive
from savecloud.core.path_resolver import normalize_path
from savecloud.exceptions import LocalIOFailure, NotConfigured
from savecloud.models.backup_artifact import BackupArtifact
from savecloud.utils import remove_path

if TYPE_CHECKING:
    from savecloud.config import Config
    from savecloud.core.events import NotificationChannel
    from savecloud.core.packager import ArchivePackager


class LocalBackupStore:
    """
    Same operations as the Drive pipeline and catalog, against a local folder.

    Directory structure:
      {local_backup_path}/
        ├── {shop}-{object_id}-{ms}.tar
        └── {shop}-{object_id}-{ms}.tar.meta.json
    """

    def __init__(
        self,
        config: Config,
        packager: ArchivePackager,
        notifier: NotificationChannel | None = None,
        locks: GameLocks | None = None,
    ) -> None:
        self._config = config
        self._packager = packager
        self._notifier = notifier or LoggingNotifier()
        self._locks = locks or GameLocks()

    def _root(self) -> Path:
        root = self._config.local_backup_path
        if root is None:
            raise NotConfigured("Local backup path is not configured")
        return root

    @staticmethod
    def _meta_path(tar_path: Path) -> Path:
        return tar_path.with_name(f"{tar_path.name}.meta.json")

    def _resolve_backup(self, file_name: str) -> Path:
        if Path(file_name).name != file_name:
            raise LocalIOFailure(f"Invalid backup name: {file_name}")
        return self._root() / file_name

    async def upload_save_game(
        self,
        shop: str,
        object_id: str,
        download_option_title: str | None = None,
        label: str | None = None,
        wine_prefix_path: str | None = None,
    ) -> str:
        """Pack the game's saves straight into the backup folder. Returns the file name."""
        root = self._root()

        async with self._locks.lock(shop, object_id):
            file_name = f"{shop}-{object_id}-{int(time.time() * 1000)}.tar"
            tar_path = root / file_name
            meta_path = self._meta_path(tar_path)
            staging = self._packager.staging_dir(shop, object_id)
            completed = False
            try:
                root.mkdir(parents=True, exist_ok=True)
                packed = await self._packager.pack(
                    shop,
                    object_id,
                    wine_prefix_path=wine_prefix_path,
                    download_option_title=download_option_title,
                    label=label,
                    archive_path=tar_path,
                )
                with open(meta_path, "w", encoding="utf-8") as f:
                    json.dump(packed.metadata.to_dict(), f, ensure_ascii=False)
                completed = True
            except OSError as e:
                raise LocalIOFailure(f"Failed to write local backup {file_name}: {e}") from e
            finally:
                remove_path(staging)
                if not completed:
                    remove_path(tar_path)
                    remove_path(meta_path)

        self._notifier.emit(upload_complete_event(object_id, shop))
        logger.info(f"Created local backup {file_name}")
        return file_name

    async def list_backups(self, shop: str, object_id: str) -> list[BackupArtifact]:
        """Backups of one game, newest first. Missing or broken sidecars fall back to defaults."""
        root = self._root()
        if not root.is_dir():
            return []

        prefix = f"{shop}-{object_id}-"
        entries: list[tuple[float, BackupArtifact]] = []
        for tar_path in root.glob(f"{prefix}*.tar"):
            try:
                stat = tar_path.stat()
            except OSError:
                continue
            try:
                meta = parse_metadata(self._meta_path(tar_path).read_text(encoding="utf-8"))
            except OSError:
                meta = {}

            timestamp = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat()
            entries.append(
                (
                    stat.st_mtime,
                    BackupArtifact(
                        id=tar_path.name,
                        name=tar_path.name,
                        size=stat.st_size,
                        created_at=timestamp,
                        modified_at=timestamp,
                        game_object_id=meta.get("objectId", object_id),
                        game_shop=meta.get("shop", shop),
                        label=meta.get("label"),
                        metadata=meta,
                    ),
                )
            )

        entries.sort(key=lambda e: e[0], reverse=True)
        return [artifact for _, artifact in entries]

    async def download_backup(
        self,
        shop: str,
        object_id: str,
        file_name: str,
        wine_prefix_path: str | None = None,
    ) -> None:
        """Extract a local backup into staging and restore it."""
        tar_path = self._resolve_backup(file_name)

        async with self._locks.lock(shop, object_id):
            try:
                meta = parse_metadata(self._meta_path(tar_path).read_text(encoding="utf-8"))
            except OSError:
                meta = {}

            staging = self._packager.staging_dir(shop, object_id)
            if staging.exists():
                remove_path(staging)
            await asyncio.to_thread(extract_archive, tar_path, staging)

            await self._packager.capture_tool.restore(
                staging,
                object_id,
                normalize_path(meta.get("homeDir", "")),
                wine_prefix_path,
                meta.get("winePrefixPath"),
            )

        self._notifier.emit(download_complete_event(object_id, shop))
        logger.info(f"Restored local backup {file_name}")

    async def delete_backup(self, file_name: str) -> None:
        """Remove archive and sidecar; either may already be gone."""
        tar_path = self._resolve_backup(file_name)
        for path in (tar_path, self._meta_path(tar_path)):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to delete {path}: {e}")
