"""Credential store: persisted tokens and connected-account profile."""

from __future__ import annotations

from dataclasses import asdict

from loguru import logger

from savecloud.data.kv_store import Encoding, KeyValueStore
from savecloud.models.credentials import AuthenticatedUserInfo, Credentials

TOKENS_KEY = "google_drive_tokens"
USER_INFO_KEY = "google_drive_user_info"


class CredentialStore:
    """
    Sole owner of the persisted Credentials and AuthenticatedUserInfo.

    Failed reads (missing key, undecodable value, wrong shape) return None:
    absence is the normal "not yet connected" state.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def load_tokens(self) -> Credentials | None:
        try:
            data = self._store.get(TOKENS_KEY, Encoding.JSON)
            return Credentials(**data)
        except (KeyError, ValueError, TypeError):
            return None

    def save_tokens(self, credentials: Credentials) -> None:
        self._store.put(TOKENS_KEY, asdict(credentials), Encoding.JSON)

    def load_user_info(self) -> AuthenticatedUserInfo | None:
        try:
            data = self._store.get(USER_INFO_KEY, Encoding.JSON)
            return AuthenticatedUserInfo(**data)
        except (KeyError, ValueError, TypeError):
            return None

    def save_user_info(self, user_info: AuthenticatedUserInfo) -> None:
        self._store.put(USER_INFO_KEY, asdict(user_info), Encoding.JSON)

    def clear_all(self) -> None:
        """Delete tokens and user info independently; each delete is idempotent."""
        for key in (TOKENS_KEY, USER_INFO_KEY):
            try:
                self._store.delete(key)
            except OSError as e:
                logger.error(f"Failed to delete {key}: {e}")
