"""Abstract base class for save-data capture tools."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path


class SaveCaptureTool(ABC):
    """Produces a directory of save files for a game, and puts one back."""

    @abstractmethod
    async def capture(
        self,
        shop: str,
        object_id: str,
        destination: Path,
        wine_prefix_path: str | None = None,
    ) -> None:
        """Write the game's current save files into ``destination``."""
        ...

    @abstractmethod
    async def restore(
        self,
        source: Path,
        object_id: str,
        home_dir: str,
        wine_prefix_path: str | None = None,
        artifact_wine_prefix_path: str | None = None,
    ) -> None:
        """
        Move captured files from ``source`` back to their live locations.

        ``home_dir`` is the profile recorded at capture time;
        ``wine_prefix_path`` is the current prefix and
        ``artifact_wine_prefix_path`` the one recorded in the backup.
        """
        ...
