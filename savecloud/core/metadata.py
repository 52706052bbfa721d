"""Backup metadata decoding: every failure degrades to an empty record."""

from __future__ import annotations

import json

from loguru import logger

from savecloud.exceptions import MetadataParseFailure
from savecloud.models.backup_artifact import BackupArtifact, RemoteFile


def _decode(description: str) -> dict[str, str]:
    try:
        data = json.loads(description or "{}")
    except json.JSONDecodeError as e:
        raise MetadataParseFailure(str(e)) from e
    if not isinstance(data, dict):
        raise MetadataParseFailure(f"expected an object, got {type(data).__name__}")
    return {str(key): str(value) for key, value in data.items() if value is not None}


def parse_metadata(description: str | None) -> dict[str, str]:
    try:
        return _decode(description or "")
    except MetadataParseFailure as e:
        logger.debug(f"Ignoring unreadable backup metadata: {e}")
        return {}


def to_artifact(remote: RemoteFile, shop: str, object_id: str) -> BackupArtifact:
    """Project a remote file into a BackupArtifact, defaulting to the requested game."""
    meta = parse_metadata(remote.description)
    return BackupArtifact(
        id=remote.id,
        name=remote.name,
        size=remote.size,
        created_at=remote.created_at,
        modified_at=remote.modified_at,
        game_object_id=meta.get("objectId", object_id),
        game_shop=meta.get("shop", shop),
        label=meta.get("label"),
        metadata=meta,
    )
