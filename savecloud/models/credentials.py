"""Credential models: OAuth tokens and the connected account."""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass
class Credentials:
    """Access/refresh token pair for the connected account."""

    access_token: str
    refresh_token: str
    expires_at: float = 0.0  # Unix timestamp (seconds)

    def is_expired(self, leeway: float = 60.0) -> bool:
        return self.expires_at <= time.time() + leeway


@dataclass
class TokenRotation:
    """Raw values handed out by the provider on refresh: any field may be missing."""

    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: float | None = None


@dataclass
class AuthenticatedUserInfo:
    """Profile of the connected account. Answers "connected as whom", never authorizes."""

    email: str
    display_name: str
    photo_url: str | None = None


@dataclass
class ConnectionStatus:
    connected: bool
    user_info: AuthenticatedUserInfo | None = None
