"""Archive packager: capture saves into staging and roll them into one tar."""

from __future__ import annotations

import asyncio
import socket
import sys
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING
from uuid import uuid4

from loguru import logger

from savecloud.core.path_resolver import resolve_prefix_path, windows_like_user_profile_path
from savecloud.exceptions import LocalIOFailure
from savecloud.models.backup_artifact import BackupMetadata
from savecloud.utils import remove_path

if TYPE_CHECKING:
    from savecloud.capture.base import SaveCaptureTool
    from savecloud.config import Config

ARCHIVE_MIME_TYPE = "application/x-tar"


def _normalize_tarinfo(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info


def create_archive(source_dir: Path, archive_path: Path) -> None:
    """Uncompressed tar of ``source_dir``'s contents, entries in sorted order."""
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive_path, "w", format=tarfile.PAX_FORMAT) as tar:
        for entry in sorted(source_dir.rglob("*")):
            tar.add(
                entry,
                arcname=entry.relative_to(source_dir).as_posix(),
                recursive=False,
                filter=_normalize_tarinfo,
            )


def extract_archive(archive_path: Path, destination: Path) -> None:
    """Extract into ``destination``, refusing members that escape it."""
    destination.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive_path, "r") as tar:
            tar.extractall(destination, filter="data")
    except (tarfile.TarError, OSError) as e:
        raise LocalIOFailure(f"Failed to extract {archive_path.name}: {e}") from e


@dataclass
class PackedBackup:
    """A ready-to-upload archive plus the staging directory it was built from."""

    archive_path: Path
    staging_dir: Path
    metadata: BackupMetadata


class ArchivePackager:
    """
    Builds backup archives. Never talks to the network.

    Staging directory: ``{backups_path}/{shop}-{object_id}``
    Archive:           ``{backups_path}/{uuid}.tar``
    """

    def __init__(self, config: Config, capture_tool: SaveCaptureTool) -> None:
        self._config = config
        self._capture = capture_tool

    @property
    def capture_tool(self) -> SaveCaptureTool:
        return self._capture

    def staging_dir(self, shop: str, object_id: str) -> Path:
        return self._config.backups_path / f"{shop}-{object_id}"

    def new_archive_path(self) -> Path:
        return self._config.backups_path / f"{uuid4()}.tar"

    async def pack(
        self,
        shop: str,
        object_id: str,
        wine_prefix_path: str | None = None,
        download_option_title: str | None = None,
        label: str | None = None,
        archive_path: Path | None = None,
    ) -> PackedBackup:
        staging = self.staging_dir(shop, object_id)
        archive = archive_path or self.new_archive_path()

        if staging.exists() and not remove_path(staging):
            logger.warning(f"Proceeding with stale staging directory {staging}")

        await self._capture.capture(shop, object_id, staging, wine_prefix_path)

        try:
            await asyncio.to_thread(create_archive, staging, archive)
        except OSError as e:
            raise LocalIOFailure(f"Failed to write archive {archive}: {e}") from e

        metadata = self.build_metadata(
            shop, object_id, wine_prefix_path, download_option_title, label
        )
        logger.info(f"Packed {shop}/{object_id} into {archive.name}")
        return PackedBackup(archive_path=archive, staging_dir=staging, metadata=metadata)

    @staticmethod
    def build_metadata(
        shop: str,
        object_id: str,
        wine_prefix_path: str | None = None,
        download_option_title: str | None = None,
        label: str | None = None,
    ) -> BackupMetadata:
        return BackupMetadata(
            shop=shop,
            object_id=object_id,
            hostname=socket.gethostname(),
            home_dir=windows_like_user_profile_path(wine_prefix_path),
            platform=sys.platform,
            wine_prefix_path=resolve_prefix_path(wine_prefix_path) if wine_prefix_path else None,
            download_option_title=download_option_title,
            label=label,
        )
