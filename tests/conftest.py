"""Shared fixtures and in-memory fakes for the provider, capture tool and UI surface."""

from __future__ import annotations

import asyncio
import itertools
import re
import socket
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator

import httpx
import pytest

from savecloud.capture.base import SaveCaptureTool
from savecloud.config import Config, reset_config
from savecloud.core.events import CallbackNotifier
from savecloud.core.folder_resolver import BackupFolderResolver
from savecloud.core.packager import ArchivePackager
from savecloud.core.session import CloudSession
from savecloud.core.token_manager import TokenManager
from savecloud.data.credential_store import CredentialStore
from savecloud.data.kv_store import KeyValueStore
from savecloud.exceptions import AuthorizationDenied, CaptureToolError, TransientNetworkFailure
from savecloud.models.backup_artifact import RemoteFile
from savecloud.models.credentials import AuthenticatedUserInfo, Credentials, TokenRotation
from savecloud.providers.base import OAuthClient, RemoteStorageProvider, RotationHook
from savecloud.providers.google_drive import FOLDER_MIME_TYPE


class FakeOAuthClient(OAuthClient):
    def __init__(self) -> None:
        self.credentials: Credentials | None = None
        self.hook: RotationHook | None = None
        self.network_calls: list[str] = []
        self.revoke_error: Exception | None = None
        self.revoke_delay: float = 0.0
        self.closed = 0

    def generate_auth_url(self) -> str:
        return "https://accounts.example.test/consent?access_type=offline&prompt=consent"

    async def exchange_code(self, code: str) -> Credentials:
        self.network_calls.append("exchange_code")
        if code == "rejected":
            raise AuthorizationDenied("Authorization code rejected")
        self.credentials = Credentials("a1", "r1", time.time() + 3600)
        return self.credentials

    async def fetch_user_info(self) -> AuthenticatedUserInfo:
        self.network_calls.append("fetch_user_info")
        return AuthenticatedUserInfo(email="player@example.com", display_name="Player")

    async def revoke(self) -> None:
        self.network_calls.append("revoke")
        if self.revoke_delay:
            await asyncio.sleep(self.revoke_delay)
        if self.revoke_error:
            raise self.revoke_error

    def set_credentials(self, credentials: Credentials | None) -> None:
        self.credentials = credentials

    def set_rotation_hook(self, hook: RotationHook | None) -> None:
        self.hook = hook

    async def access_token(self) -> str:
        assert self.credentials is not None
        return self.credentials.access_token

    async def refresh(self) -> str:
        return self.rotate(TokenRotation(access_token="refreshed"))

    async def aclose(self) -> None:
        self.closed += 1

    def rotate(self, rotation: TokenRotation) -> str:
        """Simulate a provider-side refresh reporting ``rotation``."""
        assert self.credentials is not None
        self.credentials = Credentials(
            access_token=rotation.access_token or self.credentials.access_token,
            refresh_token=rotation.refresh_token or self.credentials.refresh_token,
            expires_at=rotation.expires_at or self.credentials.expires_at,
        )
        if self.hook:
            self.hook(rotation)
        return self.credentials.access_token


@dataclass
class StoredFile:
    name: str
    parents: list[str]
    description: str
    content: bytes
    created: int
    mime_type: str = ""


class FakeDriveProvider(RemoteStorageProvider):
    """In-memory Drive understanding just the queries the engine sends."""

    def __init__(self) -> None:
        self.files: dict[str, StoredFile] = {}
        self.folders: dict[str, str] = {}
        self.calls: list[str] = []
        self._ids = itertools.count(1)
        self._clock = itertools.count(1)

    def add_folder(self, name: str) -> str:
        folder_id = f"folder-{next(self._ids)}"
        self.folders[folder_id] = name
        return folder_id

    def add_file(self, name: str, parent: str, description: str = "", content: bytes = b"") -> str:
        file_id = f"file-{next(self._ids)}"
        self.files[file_id] = StoredFile(name, [parent], description, content, next(self._clock))
        return file_id

    def _remote(self, file_id: str, stored: StoredFile) -> RemoteFile:
        return RemoteFile(
            id=file_id,
            name=stored.name,
            size=len(stored.content),
            created_at=f"2024-01-01T00:00:{stored.created:02d}Z",
            modified_at=f"2024-01-01T00:00:{stored.created:02d}Z",
            description=stored.description,
        )

    async def list_files(self, query, fields="files(id, name)", order_by=None) -> list[RemoteFile]:
        self.calls.append("list_files")
        if FOLDER_MIME_TYPE in query:
            name = re.search(r"name='((?:[^'\\]|\\.)*)'", query).group(1).replace("\\'", "'")
            return [RemoteFile(id=fid, name=n) for fid, n in self.folders.items() if n == name]

        parent = re.search(r"'([^']+)' in parents", query).group(1)
        needle = re.search(r"name contains '((?:[^'\\]|\\.)*)'", query).group(1)
        matches = [
            (fid, f) for fid, f in self.files.items() if parent in f.parents and needle in f.name
        ]
        if order_by == "createdTime desc":
            matches.sort(key=lambda item: item[1].created, reverse=True)
        return [self._remote(fid, f) for fid, f in matches]

    async def create_folder(self, name: str) -> str:
        self.calls.append("create_folder")
        return self.add_folder(name)

    async def create_file(self, name, parent_id, description, source: Path, mime_type="application/octet-stream") -> str:
        self.calls.append("create_file")
        file_id = self.add_file(name, parent_id, description, source.read_bytes())
        self.files[file_id].mime_type = mime_type
        return file_id

    async def get_file(self, file_id: str, fields: str = "description") -> RemoteFile:
        self.calls.append("get_file")
        if file_id not in self.files:
            raise TransientNetworkFailure(f"File {file_id} not found", 404)
        return self._remote(file_id, self.files[file_id])

    async def iter_file_content(self, file_id: str) -> AsyncIterator[bytes]:
        self.calls.append("iter_file_content")
        content = self.files[file_id].content
        half = len(content) // 2
        yield content[:half]
        yield content[half:]

    async def delete_file(self, file_id: str) -> None:
        self.calls.append("delete_file")
        if self.files.pop(file_id, None) is None:
            raise TransientNetworkFailure(f"File {file_id} not found", 404)


class FakeCaptureTool(SaveCaptureTool):
    """Writes ``saves`` on capture; records what restore was asked to do."""

    def __init__(self, saves: dict[str, bytes] | None = None) -> None:
        self.saves = saves if saves is not None else {"a.sav": b"X", "b.sav": b"Y"}
        self.captures: list[dict] = []
        self.restores: list[dict] = []
        self.fail_capture = False

    async def capture(self, shop, object_id, destination: Path, wine_prefix_path=None) -> None:
        self.captures.append(
            {"shop": shop, "object_id": object_id, "destination": destination, "wine_prefix_path": wine_prefix_path}
        )
        if self.fail_capture:
            raise CaptureToolError("capture failed")
        game_dir = destination / object_id
        game_dir.mkdir(parents=True, exist_ok=True)
        for name, content in self.saves.items():
            (game_dir / name).write_bytes(content)

    async def restore(self, source: Path, object_id, home_dir, wine_prefix_path=None, artifact_wine_prefix_path=None) -> None:
        game_dir = source / object_id
        self.restores.append(
            {
                "source": source,
                "object_id": object_id,
                "home_dir": home_dir,
                "wine_prefix_path": wine_prefix_path,
                "artifact_wine_prefix_path": artifact_wine_prefix_path,
                "files": {p.name: p.read_bytes() for p in game_dir.iterdir()} if game_dir.is_dir() else {},
            }
        )


@dataclass
class FakeSurface:
    """Stands in for the browser: follows the redirect with the given query."""

    port: int
    query: str | None = "code=good-code"
    opened: list[str] = field(default_factory=list)
    closed: int = 0
    task: asyncio.Task | None = None

    def open(self, url: str) -> None:
        self.opened.append(url)
        if self.query is not None:
            self.task = asyncio.get_running_loop().create_task(self._follow_redirect())

    async def _follow_redirect(self) -> httpx.Response:
        async with httpx.AsyncClient(trust_env=False) as client:
            return await client.get(f"http://127.0.0.1:{self.port}/oauth2callback?{self.query}")

    def close(self) -> None:
        self.closed += 1


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch):
    monkeypatch.delenv("SAVECLOUD_GOOGLE_CLIENT_ID", raising=False)
    monkeypatch.delenv("SAVECLOUD_GOOGLE_CLIENT_SECRET", raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    cfg = Config(tmp_path / "data")
    with cfg.batch_update():
        cfg.set("oauth_redirect_port", free_port())
        cfg.set("auth_timeout", 5)
        cfg.set("revoke_timeout", 0.5)
    return cfg


@pytest.fixture
def kv_store(config: Config) -> KeyValueStore:
    return KeyValueStore(config.data_dir)


@pytest.fixture
def credential_store(kv_store: KeyValueStore) -> CredentialStore:
    return CredentialStore(kv_store)


@pytest.fixture
def oauth() -> FakeOAuthClient:
    return FakeOAuthClient()


@pytest.fixture
def make_oauth() -> type[FakeOAuthClient]:
    return FakeOAuthClient


@pytest.fixture
def drive() -> FakeDriveProvider:
    return FakeDriveProvider()


@pytest.fixture
def surface(config: Config) -> FakeSurface:
    return FakeSurface(port=config.oauth_redirect_port)


@pytest.fixture
def token_manager(config, credential_store, oauth, drive, surface) -> TokenManager:
    manager = TokenManager(
        config,
        credential_store,
        surface=surface,
        session_factory=lambda cid, secret, redirect: CloudSession(oauth=oauth, storage=drive),
    )
    manager.configure("client-id", "client-secret")
    return manager


@pytest.fixture
def unconfigured_manager(config, credential_store, oauth, drive, surface) -> TokenManager:
    manager = TokenManager(
        config,
        credential_store,
        surface=surface,
        session_factory=lambda cid, secret, redirect: CloudSession(oauth=oauth, storage=drive),
    )
    manager.configure()
    return manager


@pytest.fixture
def connected(token_manager, credential_store, oauth) -> TokenManager:
    """A manager restarted with persisted tokens and profile, as after a past sign-in."""
    credential_store.save_tokens(Credentials("a1", "r1", time.time() + 3600))
    credential_store.save_user_info(AuthenticatedUserInfo("player@example.com", "Player"))
    token_manager.configure("client-id", "client-secret")
    assert oauth.credentials is not None
    return token_manager


@pytest.fixture
def folder_resolver(token_manager) -> BackupFolderResolver:
    return BackupFolderResolver(token_manager)


@pytest.fixture
def capture_tool() -> FakeCaptureTool:
    return FakeCaptureTool()


@pytest.fixture
def packager(config, capture_tool) -> ArchivePackager:
    return ArchivePackager(config, capture_tool)


@pytest.fixture
def notifier() -> tuple[CallbackNotifier, list[str]]:
    events: list[str] = []
    channel = CallbackNotifier()
    channel.subscribe(events.append)
    return channel, events
