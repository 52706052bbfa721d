"""Token lifecycle: configuration, interactive sign-in, rotation and disconnect."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Callable

from loguru import logger

from savecloud.core.oauth_callback import CALLBACK_PATH, BrowserSurface, CallbackListener
from savecloud.exceptions import NotConfigured
from savecloud.models.credentials import (
    AuthenticatedUserInfo,
    ConnectionStatus,
    Credentials,
    TokenRotation,
)

if TYPE_CHECKING:
    from savecloud.config import Config
    from savecloud.core.oauth_callback import AuthorizationSurface
    from savecloud.core.session import CloudSession
    from savecloud.data.credential_store import CredentialStore

SessionFactory = Callable[[str, str, str], "CloudSession"]


class TokenManager:
    """
    Owns the single CloudSession of the process and keeps its tokens fresh.

    Every other service asks for the session through ``require_session()``,
    which fails with NotConfigured before any network call is attempted.
    """

    def __init__(
        self,
        config: Config,
        credential_store: CredentialStore,
        surface: AuthorizationSurface | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self._config = config
        self._store = credential_store
        self._surface = surface or BrowserSurface()
        self._session_factory = session_factory
        self._session: CloudSession | None = None
        self._retired: list[CloudSession] = []

    @property
    def is_configured(self) -> bool:
        return self._session is not None

    @property
    def redirect_uri(self) -> str:
        return f"http://localhost:{self._config.oauth_redirect_port}{CALLBACK_PATH}"

    def require_session(self) -> CloudSession:
        if self._session is None:
            raise NotConfigured("Google Drive not configured")
        return self._session

    def configure(self, client_id: str | None = None, client_secret: str | None = None) -> bool:
        """Build the session when client credentials exist. Returns False when skipped."""
        client_id = client_id if client_id is not None else self._config.google_client_id
        client_secret = client_secret if client_secret is not None else self._config.google_client_secret

        if not client_id or not client_secret:
            logger.info("Google Drive: Missing client credentials, skipping setup")
            return False

        factory = self._session_factory
        if factory is None:
            from savecloud.providers.google_drive import create_google_session

            factory = create_google_session

        self._retire_session()
        self._session = factory(client_id, client_secret, self.redirect_uri)

        tokens = self._store.load_tokens()
        if tokens:
            self._session.oauth.set_credentials(tokens)
            self._install_rotation_hook()
            logger.info("Google Drive: restored saved session")
        return True

    def _install_rotation_hook(self) -> None:
        self.require_session().oauth.set_rotation_hook(self._on_tokens_rotated)

    def _on_tokens_rotated(self, rotation: TokenRotation) -> None:
        """Merge a rotation into the persisted record; missing values keep the stored ones."""
        existing = self._store.load_tokens()
        if existing is None:
            logger.debug("Token rotation ignored, no persisted tokens")
            return
        self._store.save_tokens(
            Credentials(
                access_token=rotation.access_token or existing.access_token,
                refresh_token=rotation.refresh_token or existing.refresh_token,
                expires_at=rotation.expires_at or existing.expires_at,
            )
        )
        logger.debug("Persisted rotated tokens")

    async def authenticate(self) -> AuthenticatedUserInfo:
        """Run the interactive consent flow and persist tokens plus profile."""
        session = self.require_session()

        listener = CallbackListener(self._config.oauth_redirect_port)
        await listener.start()
        try:
            self._surface.open(session.oauth.generate_auth_url())
            code = await listener.wait_for_code(self._config.auth_timeout)
        finally:
            await listener.close()
            self._surface.close()

        credentials = await session.oauth.exchange_code(code)
        self._store.save_tokens(credentials)
        self._install_rotation_hook()

        user_info = await session.oauth.fetch_user_info()
        self._store.save_user_info(user_info)
        logger.info(f"Google Drive connected as {user_info.email}")
        return user_info

    async def disconnect(self) -> None:
        """Best-effort revoke, then always forget every local trace of the session."""
        session = self._session
        try:
            if session is not None:
                try:
                    await asyncio.wait_for(session.oauth.revoke(), self._config.revoke_timeout)
                except Exception as e:
                    logger.warning(f"Ignoring revoke failure: {e}")
        finally:
            if session is not None:
                session.oauth.set_rotation_hook(None)
                session.oauth.set_credentials(None)
                session.backup_folder_id = None
            self._store.clear_all()
        logger.info("Google Drive disconnected")

    def get_connection_status(self) -> ConnectionStatus:
        """Local-only check; does not prove the tokens still work remotely."""
        tokens = self._store.load_tokens()
        user_info = self._store.load_user_info()
        return ConnectionStatus(
            connected=tokens is not None and user_info is not None,
            user_info=user_info,
        )

    def _retire_session(self) -> None:
        """Detach the current session; its client is closed by the next ``aclose()``."""
        old, self._session = self._session, None
        if old is None:
            return
        old.oauth.set_rotation_hook(None)
        self._retired.append(old)

    async def aclose(self) -> None:
        """Close the current session and any session replaced by ``configure()``."""
        retired, self._retired = self._retired, []
        for session in retired:
            await session.aclose()
        if self._session is not None:
            await self._session.aclose()
