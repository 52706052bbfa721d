"""Ludusavi-backed capture tool: backup via the CLI, restore from mapping.yaml."""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from savecloud.capture.base import SaveCaptureTool
from savecloud.core.path_resolver import (
    PUBLIC_PROFILE_PATH,
    add_prefix_to_windows_path,
    to_windows_path,
    windows_like_user_profile_path,
)
from savecloud.exceptions import CaptureToolError


class LudusaviCaptureTool(SaveCaptureTool):
    """
    Uses a ``ludusavi`` binary for capture.

    Restore does not go through the binary: it reads the ``mapping.yaml``
    ludusavi writes next to the files and moves each file itself, so paths
    recorded under another home directory or Wine prefix can be remapped.
    """

    def __init__(self, binary: str = "ludusavi") -> None:
        self._binary = binary

    async def capture(
        self,
        shop: str,
        object_id: str,
        destination: Path,
        wine_prefix_path: str | None = None,
    ) -> None:
        cmd = [self._binary, "backup", "--force", "--api", "--path", str(destination)]
        if wine_prefix_path:
            cmd += ["--wine-prefix", wine_prefix_path]
        cmd.append(object_id)

        logger.debug(f"Running {' '.join(cmd)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CaptureToolError(f"Cannot run {self._binary}: {e}") from e

        _stdout, stderr = await process.communicate()
        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip()
            raise CaptureToolError(
                f"ludusavi backup of {shop}/{object_id} exited with {process.returncode}: {detail}"
            )
        logger.info(f"Captured saves for {shop}/{object_id}")

    async def restore(
        self,
        source: Path,
        object_id: str,
        home_dir: str,
        wine_prefix_path: str | None = None,
        artifact_wine_prefix_path: str | None = None,
    ) -> None:
        game_backup_path = source / object_id
        manifest = await asyncio.to_thread(self._read_mapping, game_backup_path / "mapping.yaml")

        user_profile_path = windows_like_user_profile_path(wine_prefix_path)
        drives: dict[str, str] = manifest.get("drives") or {}

        moves: list[tuple[Path, Path]] = []
        for backup in manifest.get("backups") or []:
            for recorded in (backup.get("files") or {}):
                source_path = game_backup_path / self._to_archive_path(recorded, drives)
                destination = self._destination_for(
                    recorded,
                    home_dir,
                    user_profile_path,
                    wine_prefix_path,
                    artifact_wine_prefix_path,
                )
                moves.append((source_path, Path(destination)))

        await asyncio.to_thread(self._move_all, moves)
        logger.info(f"Restored {len(moves)} save file(s) for {object_id}")

    @staticmethod
    def _read_mapping(path: Path) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise CaptureToolError(f"Cannot read backup mapping {path}: {e}") from e
        if not isinstance(data, dict):
            raise CaptureToolError(f"Backup mapping {path} is empty or malformed")
        return data

    @staticmethod
    def _to_archive_path(recorded: str, drives: dict[str, str]) -> str:
        """``C:/Users/x/save.sav`` → ``drive-C/Users/x/save.sav`` using the drives table."""
        archive_path = recorded
        for drive_key, drive_value in drives.items():
            archive_path = archive_path.replace(drive_value, drive_key, 1)
        return archive_path

    @staticmethod
    def _destination_for(
        recorded: str,
        home_dir: str,
        user_profile_path: str,
        wine_prefix_path: str | None,
        artifact_wine_prefix_path: str | None,
    ) -> str:
        destination = to_windows_path(recorded, artifact_wine_prefix_path)
        if home_dir:
            destination = destination.replace(
                home_dir, add_prefix_to_windows_path(user_profile_path, wine_prefix_path), 1
            )
        return destination.replace(
            PUBLIC_PROFILE_PATH, add_prefix_to_windows_path(PUBLIC_PROFILE_PATH, wine_prefix_path), 1
        )

    @staticmethod
    def _move_all(moves: list[tuple[Path, Path]]) -> None:
        for source_path, destination in moves:
            logger.info(f"Moving {source_path} to {destination}")
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                destination.unlink(missing_ok=True)
                shutil.move(str(source_path), str(destination))
            except OSError as e:
                raise CaptureToolError(f"Failed to restore {destination}: {e}") from e
