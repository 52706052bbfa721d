"""Application configuration: JSON-based, with file locking and batch update support."""

from __future__ import annotations

import json
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from loguru import logger

_instance: "Config | None" = None

# Default data directory
_DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "savecloud"

# Environment variables that override the stored client credentials
_ENV_CLIENT_ID = "SAVECLOUD_GOOGLE_CLIENT_ID"
_ENV_CLIENT_SECRET = "SAVECLOUD_GOOGLE_CLIENT_SECRET"


def get_config() -> Config:
    """Module-level factory: single global Config instance."""
    global _instance
    if _instance is None:
        _instance = Config()
    return _instance


def reset_config() -> None:
    """Reset the global config instance (for testing)."""
    global _instance
    _instance = None


class Config:
    """JSON-based application configuration with file locking."""

    _DEFAULTS: dict[str, Any] = {
        # Google Drive client credentials: empty disables the cloud feature
        "google_client_id": "",
        "google_client_secret": "",
        "oauth_redirect_port": 65432,
        "auth_timeout": 300,
        "revoke_timeout": 10,
        # Staging root for pack/unpack operations
        "backups_path": "",
        # Plain folder used by the local backup store
        "local_backup_path": "",
        "ludusavi_binary": "ludusavi",
    }

    def __init__(self, config_dir: Path | None = None) -> None:
        self._data: dict[str, Any] = {}
        self._dir = config_dir or _DEFAULT_DATA_DIR
        self._path = self._dir / "config.json"
        self._lock = threading.Lock()
        self._defer_save = False
        self._load()

    def _load(self) -> None:
        """Load config from disk, merging with defaults."""
        self._data = json.loads(json.dumps(self._DEFAULTS))  # deep copy defaults
        if self._path.exists():
            try:
                with open(self._path, encoding="utf-8") as f:
                    user_data = json.load(f)
                self._deep_merge(self._data, user_data)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Failed to load config, using defaults: {e}")

    def _deep_merge(self, base: dict, override: dict) -> None:
        """Recursively merge override into base."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def _save(self) -> None:
        """Persist config to disk with file locking."""
        if self._defer_save:
            return
        with self._lock:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(".tmp")
            try:
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(self._data, f, ensure_ascii=False, indent=2)
                tmp_path.replace(self._path)
            except OSError as e:
                logger.error(f"Failed to save config: {e}")
                if tmp_path.exists():
                    tmp_path.unlink(missing_ok=True)

    @contextmanager
    def batch_update(self) -> Iterator[None]:
        """Context manager for batching multiple config changes into a single write."""
        self._defer_save = True
        try:
            yield
        finally:
            self._defer_save = False
            self._save()

    # ── Generic access ──

    def get(self, key: str, default: Any = None) -> Any:
        """Get a config value by dot-separated key path."""
        parts = key.split(".")
        node = self._data
        for part in parts:
            if isinstance(node, dict) and part in node:
                node = node[part]
            else:
                return default
        return node

    def set(self, key: str, value: Any) -> None:
        """Set a config value by dot-separated key path."""
        parts = key.split(".")
        node = self._data
        for part in parts[:-1]:
            if part not in node or not isinstance(node[part], dict):
                node[part] = {}
            node = node[part]
        node[parts[-1]] = value
        self._save()

    # ── Typed properties ──

    @property
    def data_dir(self) -> Path:
        return self._dir

    @property
    def google_client_id(self) -> str:
        return os.environ.get(_ENV_CLIENT_ID) or self._data.get("google_client_id", "")

    @property
    def google_client_secret(self) -> str:
        return os.environ.get(_ENV_CLIENT_SECRET) or self._data.get("google_client_secret", "")

    @property
    def oauth_redirect_port(self) -> int:
        return int(self._data.get("oauth_redirect_port", 65432))

    @property
    def auth_timeout(self) -> float:
        return float(self._data.get("auth_timeout", 300))

    @property
    def revoke_timeout(self) -> float:
        return float(self._data.get("revoke_timeout", 10))

    @property
    def backups_path(self) -> Path:
        raw = self._data.get("backups_path", "")
        if raw:
            return Path(raw)
        return self._dir / "backups"

    @backups_path.setter
    def backups_path(self, value: Path | None) -> None:
        self.set("backups_path", str(value) if value else "")

    @property
    def local_backup_path(self) -> Path | None:
        raw = self._data.get("local_backup_path", "")
        return Path(raw) if raw else None

    @local_backup_path.setter
    def local_backup_path(self, value: Path | None) -> None:
        self.set("local_backup_path", str(value) if value else "")

    @property
    def ludusavi_binary(self) -> str:
        return self._data.get("ludusavi_binary", "ludusavi")
