"""Google Drive provider: OAuth 2.0 and Drive v3 REST over httpx."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, AsyncIterator, Callable
from urllib.parse import urlencode

import httpx
from loguru import logger

from savecloud.core.session import CloudSession
from savecloud.exceptions import (
    AuthenticationExpired,
    AuthorizationDenied,
    TransientNetworkFailure,
)
from savecloud.models.backup_artifact import RemoteFile
from savecloud.models.credentials import AuthenticatedUserInfo, Credentials, TokenRotation
from savecloud.providers.base import OAuthClient, RemoteStorageProvider, RotationHook

SCOPES = [
    "https://www.googleapis.com/auth/drive.file",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]

_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
_TOKEN_URL = "https://oauth2.googleapis.com/token"
_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
_FILES_URL = "https://www.googleapis.com/drive/v3/files"
_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

_CHUNK_SIZE = 256 * 1024
_DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


def _raise_for_status(response: httpx.Response) -> None:
    """Translate an HTTP error status into the savecloud taxonomy."""
    if response.is_success:
        return
    request = response.request
    message = f"{request.method} {request.url.path} failed with HTTP {response.status_code}"
    try:
        detail = response.text[:200]
    except httpx.ResponseNotRead:
        detail = ""
    if detail:
        message = f"{message}: {detail}"
    if response.status_code == 401:
        raise AuthenticationExpired(message, response.status_code)
    raise TransientNetworkFailure(message, response.status_code)


async def _read_chunks(path: Path) -> AsyncIterator[bytes]:
    """Stream a local file without blocking the event loop."""
    with open(path, "rb") as f:
        while True:
            chunk = await asyncio.to_thread(f.read, _CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


class GoogleOAuthClient(OAuthClient):
    """Google OAuth 2.0 authorization-code client with automatic refresh."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        http: httpx.AsyncClient,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._http = http
        self._credentials: Credentials | None = None
        self._rotation_hook: RotationHook | None = None
        self._refresh_lock = asyncio.Lock()

    @property
    def credentials(self) -> Credentials | None:
        return self._credentials

    def generate_auth_url(self) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{_AUTH_URL}?{urlencode(params)}"

    def set_credentials(self, credentials: Credentials | None) -> None:
        self._credentials = credentials

    def set_rotation_hook(self, hook: RotationHook | None) -> None:
        self._rotation_hook = hook

    async def _token_request(self, params: dict[str, str]) -> dict[str, Any]:
        data = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            **params,
        }
        try:
            response = await self._http.post(_TOKEN_URL, data=data)
        except httpx.TransportError as e:
            raise TransientNetworkFailure(f"Token request failed: {e}") from e
        _raise_for_status(response)
        return response.json()

    async def exchange_code(self, code: str) -> Credentials:
        try:
            data = await self._token_request(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self._redirect_uri,
                }
            )
        except TransientNetworkFailure as e:
            if e.status_code is not None and 400 <= e.status_code < 500:
                raise AuthorizationDenied(f"Authorization code rejected: {e}") from e
            raise

        self._credentials = Credentials(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            expires_at=time.time() + float(data.get("expires_in", 3600)),
        )
        return self._credentials

    async def fetch_user_info(self) -> AuthenticatedUserInfo:
        token = await self.access_token()
        try:
            response = await self._http.get(
                _USERINFO_URL, headers={"Authorization": f"Bearer {token}"}
            )
        except httpx.TransportError as e:
            raise TransientNetworkFailure(f"User info request failed: {e}") from e
        _raise_for_status(response)
        data = response.json()
        email = data.get("email", "")
        return AuthenticatedUserInfo(
            email=email,
            display_name=data.get("name") or email,
            photo_url=data.get("picture"),
        )

    async def revoke(self) -> None:
        if self._credentials is None:
            return
        token = self._credentials.refresh_token or self._credentials.access_token
        try:
            response = await self._http.post(_REVOKE_URL, params={"token": token})
        except httpx.TransportError as e:
            raise TransientNetworkFailure(f"Revoke failed: {e}") from e
        _raise_for_status(response)

    async def access_token(self) -> str:
        credentials = self._require_credentials()
        if credentials.is_expired():
            async with self._refresh_lock:
                # Another task may have refreshed while we waited
                if self._require_credentials().is_expired():
                    await self._refresh_locked()
        return self._require_credentials().access_token

    async def refresh(self) -> str:
        async with self._refresh_lock:
            return await self._refresh_locked()

    def _require_credentials(self) -> Credentials:
        if self._credentials is None:
            raise AuthenticationExpired("Not authenticated", 401)
        return self._credentials

    async def _refresh_locked(self) -> str:
        current = self._require_credentials()
        if not current.refresh_token:
            raise AuthenticationExpired("No refresh token available", 401)

        try:
            data = await self._token_request(
                {"grant_type": "refresh_token", "refresh_token": current.refresh_token}
            )
        except TransientNetworkFailure as e:
            if e.status_code in (400, 401):
                raise AuthenticationExpired(f"Token refresh rejected: {e}", e.status_code) from e
            raise

        rotation = TokenRotation(
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            expires_at=time.time() + float(data["expires_in"]) if "expires_in" in data else None,
        )
        self._credentials = Credentials(
            access_token=rotation.access_token or current.access_token,
            refresh_token=rotation.refresh_token or current.refresh_token,
            expires_at=rotation.expires_at or current.expires_at,
        )
        logger.debug("Access token refreshed")

        if self._rotation_hook is not None:
            try:
                self._rotation_hook(rotation)
            except Exception as e:
                # Persisting the rotation must not fail the in-flight call
                logger.error(f"Token rotation hook failed: {e}")

        return self._credentials.access_token

    async def aclose(self) -> None:
        await self._http.aclose()


class GoogleDriveProvider(RemoteStorageProvider):
    """Drive v3 file operations authorized through a GoogleOAuthClient."""

    def __init__(self, auth: OAuthClient, http: httpx.AsyncClient) -> None:
        self._auth = auth
        self._http = http

    async def _request(
        self,
        method: str,
        url: str,
        *,
        body: Callable[[], Any] | None = None,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Authorized request; refreshes once and retries on 401."""
        for attempt in range(2):
            token = await self._auth.access_token()
            request_headers = {**(headers or {}), "Authorization": f"Bearer {token}"}
            if body is not None:
                kwargs["content"] = body()
            try:
                response = await self._http.request(method, url, headers=request_headers, **kwargs)
            except httpx.TransportError as e:
                raise TransientNetworkFailure(f"{method} {url} failed: {e}") from e

            if response.status_code == 401 and attempt == 0:
                logger.debug(f"{method} {url} returned 401, refreshing token")
                await self._auth.refresh()
                continue
            _raise_for_status(response)
            return response
        raise AuthenticationExpired(f"{method} {url} unauthorized", 401)

    @staticmethod
    def _to_remote_file(data: dict[str, Any]) -> RemoteFile:
        return RemoteFile(
            id=data["id"],
            name=data.get("name", ""),
            size=int(data.get("size") or 0),
            created_at=data.get("createdTime", ""),
            modified_at=data.get("modifiedTime", ""),
            description=data.get("description") or "",
        )

    async def list_files(
        self,
        query: str,
        fields: str = "files(id, name)",
        order_by: str | None = None,
    ) -> list[RemoteFile]:
        params: dict[str, Any] = {
            "q": query,
            "fields": f"nextPageToken, {fields}",
            "spaces": "drive",
            "pageSize": 100,
        }
        if order_by:
            params["orderBy"] = order_by

        files: list[RemoteFile] = []
        while True:
            response = await self._request("GET", _FILES_URL, params=params)
            data = response.json()
            files.extend(self._to_remote_file(f) for f in data.get("files", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token
        return files

    async def create_folder(self, name: str) -> str:
        response = await self._request(
            "POST",
            _FILES_URL,
            params={"fields": "id"},
            json={"name": name, "mimeType": FOLDER_MIME_TYPE},
        )
        return response.json()["id"]

    async def create_file(
        self,
        name: str,
        parent_id: str,
        description: str,
        source: Path,
        mime_type: str = "application/octet-stream",
    ) -> str:
        """Resumable upload: open a session with the metadata, then stream the bytes."""
        size = source.stat().st_size
        session = await self._request(
            "POST",
            _UPLOAD_URL,
            params={"uploadType": "resumable", "fields": "id"},
            json={"name": name, "parents": [parent_id], "description": description},
            headers={
                "X-Upload-Content-Type": mime_type,
                "X-Upload-Content-Length": str(size),
            },
        )
        session_url = session.headers.get("Location")
        if not session_url:
            raise TransientNetworkFailure("Upload session URL missing from response")

        response = await self._request(
            "PUT",
            session_url,
            body=lambda: _read_chunks(source),
            headers={"Content-Type": mime_type, "Content-Length": str(size)},
        )
        return response.json()["id"]

    async def get_file(self, file_id: str, fields: str = "description") -> RemoteFile:
        response = await self._request("GET", f"{_FILES_URL}/{file_id}", params={"fields": fields})
        data = response.json()
        data.setdefault("id", file_id)
        return self._to_remote_file(data)

    async def iter_file_content(self, file_id: str) -> AsyncIterator[bytes]:
        url = f"{_FILES_URL}/{file_id}"
        for attempt in range(2):
            token = await self._auth.access_token()
            try:
                async with self._http.stream(
                    "GET",
                    url,
                    params={"alt": "media"},
                    headers={"Authorization": f"Bearer {token}"},
                ) as response:
                    if response.status_code == 401 and attempt == 0:
                        await self._auth.refresh()
                        continue
                    if not response.is_success:
                        await response.aread()
                        _raise_for_status(response)
                    async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                        yield chunk
                    return
            except httpx.TransportError as e:
                raise TransientNetworkFailure(f"Download of {file_id} failed: {e}") from e
        raise AuthenticationExpired(f"Download of {file_id} unauthorized", 401)

    async def delete_file(self, file_id: str) -> None:
        await self._request("DELETE", f"{_FILES_URL}/{file_id}")


def create_google_session(client_id: str, client_secret: str, redirect_uri: str) -> CloudSession:
    """Build the OAuth client and Drive provider sharing one connection pool."""
    http = httpx.AsyncClient(timeout=_DEFAULT_TIMEOUT)
    oauth = GoogleOAuthClient(client_id, client_secret, redirect_uri, http)
    return CloudSession(oauth=oauth, storage=GoogleDriveProvider(oauth, http))
