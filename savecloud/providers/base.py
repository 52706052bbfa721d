"""Abstract base classes for the remote storage provider and its OAuth client."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator, Callable

from savecloud.models.backup_artifact import RemoteFile
from savecloud.models.credentials import AuthenticatedUserInfo, Credentials, TokenRotation

RotationHook = Callable[[TokenRotation], None]


class OAuthClient(ABC):
    """
    Authorization-code OAuth client holding the in-memory credentials.

    The client refreshes the access token on its own; every refresh is
    reported to the single installed rotation hook.
    """

    @abstractmethod
    def generate_auth_url(self) -> str:
        """URL of the consent page (offline access, forced consent)."""
        ...

    @abstractmethod
    async def exchange_code(self, code: str) -> Credentials:
        """Trade an authorization code for tokens and keep them in memory."""
        ...

    @abstractmethod
    async def fetch_user_info(self) -> AuthenticatedUserInfo:
        ...

    @abstractmethod
    async def revoke(self) -> None:
        """Revoke the server-side grant for the current credentials."""
        ...

    @abstractmethod
    def set_credentials(self, credentials: Credentials | None) -> None:
        """Seed (or clear, with None) the in-memory credentials."""
        ...

    @abstractmethod
    def set_rotation_hook(self, hook: RotationHook | None) -> None:
        """Install the rotation hook, replacing any previous one."""
        ...

    @abstractmethod
    async def access_token(self) -> str:
        """A valid access token, refreshing first when needed."""
        ...

    @abstractmethod
    async def refresh(self) -> str:
        """Force a refresh and return the new access token."""
        ...

    async def aclose(self) -> None:
        """Release network resources. Optional."""
        return None


class RemoteStorageProvider(ABC):
    """File/folder operations the backup engine depends on."""

    @abstractmethod
    async def list_files(
        self,
        query: str,
        fields: str = "files(id, name)",
        order_by: str | None = None,
    ) -> list[RemoteFile]:
        ...

    @abstractmethod
    async def create_folder(self, name: str) -> str:
        """Create a folder and return its id."""
        ...

    @abstractmethod
    async def create_file(
        self,
        name: str,
        parent_id: str,
        description: str,
        source: Path,
        mime_type: str = "application/octet-stream",
    ) -> str:
        """Upload ``source`` as a new file under ``parent_id`` and return its id."""
        ...

    @abstractmethod
    async def get_file(self, file_id: str, fields: str = "description") -> RemoteFile:
        ...

    @abstractmethod
    def iter_file_content(self, file_id: str) -> AsyncIterator[bytes]:
        """Stream the file content in chunks."""
        ...

    @abstractmethod
    async def delete_file(self, file_id: str) -> None:
        ...

    async def aclose(self) -> None:
        """Release network resources. Optional."""
        return None
