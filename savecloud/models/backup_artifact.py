"""Backup artifact models."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class BackupMetadata:
    """Provenance record embedded (JSON-encoded) in the remote file description."""

    shop: str
    object_id: str
    hostname: str = ""
    home_dir: str = ""  # Windows-like user profile path at capture time
    platform: str = ""
    wine_prefix_path: str | None = None
    download_option_title: str | None = None
    label: str | None = None

    def to_dict(self) -> dict[str, str]:
        """Serialize with the wire field names, omitting unset optionals."""
        data = {
            "shop": self.shop,
            "objectId": self.object_id,
            "hostname": self.hostname,
            "homeDir": self.home_dir,
            "platform": self.platform,
        }
        if self.wine_prefix_path:
            data["winePrefixPath"] = self.wine_prefix_path
        if self.download_option_title:
            data["downloadOptionTitle"] = self.download_option_title
        if self.label:
            data["label"] = self.label
        return data


@dataclass
class RemoteFile:
    """A file as reported by the remote storage provider."""

    id: str
    name: str = ""
    size: int = 0
    created_at: str = ""  # RFC 3339
    modified_at: str = ""
    description: str = ""


@dataclass
class BackupArtifact:
    """In-memory projection of a stored backup, scoped to one (shop, objectId)."""

    id: str
    name: str
    size: int
    created_at: str
    modified_at: str
    game_object_id: str
    game_shop: str
    label: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
