"""Path mapping between native, Wine-prefixed and Windows-like save locations."""

from __future__ import annotations

import getpass
import os
import posixpath
import re
from pathlib import Path

PUBLIC_PROFILE_PATH = "C:/Users/Public"

_USER_PROFILE_RE = re.compile(r'^"USERPROFILE"="(?P<value>.*)"\s*$')


def normalize_path(path: str) -> str:
    """Forward slashes, collapsed separators and dot segments. Empty stays empty."""
    if not path:
        return ""
    return posixpath.normpath(path.replace("\\", "/"))


def add_trailing_slash(path: str) -> str:
    return path if path.endswith("/") else f"{path}/"


def _read_wine_user_profile(prefix: Path) -> str | None:
    """USERPROFILE from the prefix's user.reg ``[Volatile Environment]`` key."""
    user_reg = prefix / "user.reg"
    try:
        lines = user_reg.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return None

    in_section = False
    for line in lines:
        if line.startswith("["):
            in_section = line.startswith("[Volatile Environment]")
            continue
        if not in_section:
            continue
        match = _USER_PROFILE_RE.match(line)
        if match:
            return match.group("value").replace("\\\\", "\\")
    return None


def windows_like_user_profile_path(wine_prefix_path: str | None = None) -> str:
    """
    The user profile a save tool records paths against.

    Native: the home directory. Wine: the prefix's USERPROFILE, or
    ``C:/users/<user>`` when the registry does not say.
    """
    if wine_prefix_path:
        profile = _read_wine_user_profile(Path(wine_prefix_path))
        if profile:
            return normalize_path(profile)
        user = os.environ.get("USER") or getpass.getuser()
        return f"C:/users/{user}"
    return normalize_path(str(Path.home()))


def to_windows_path(backup_path: str, wine_prefix_path: str | None = None) -> str:
    """Strip a recorded Wine prefix and turn ``drive_c`` into ``C:``."""
    if wine_prefix_path:
        backup_path = backup_path.replace(add_trailing_slash(wine_prefix_path), "", 1)
    return backup_path.replace("drive_c", "C:", 1)


def add_prefix_to_windows_path(windows_path: str, wine_prefix_path: str | None = None) -> str:
    """Re-root a Windows-like path inside a Wine prefix (no-op without one)."""
    if not wine_prefix_path:
        return windows_path
    return posixpath.normpath(
        posixpath.join(wine_prefix_path, windows_path.replace("C:", "drive_c", 1))
    )


def resolve_prefix_path(wine_prefix_path: str) -> str:
    """Real path of a prefix, following symlinks."""
    return os.path.realpath(wine_prefix_path)
