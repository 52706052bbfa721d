"""Application context: service container for dependency injection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from savecloud.config import Config
    from savecloud.core.catalog import BackupCatalog
    from savecloud.core.events import NotificationChannel
    from savecloud.core.folder_resolver import BackupFolderResolver
    from savecloud.core.local_backup import LocalBackupStore
    from savecloud.core.packager import ArchivePackager
    from savecloud.core.token_manager import TokenManager
    from savecloud.core.transfer import TransferPipeline
    from savecloud.data.credential_store import CredentialStore
    from savecloud.data.kv_store import KeyValueStore


@dataclass
class AppContext:
    """
    Central service container.

    Front ends (the CLI, a UI) receive this once and never build services
    themselves.
    """

    config: Config
    store: KeyValueStore
    credential_store: CredentialStore
    notifier: NotificationChannel

    # Cloud backup services
    token_manager: TokenManager
    folder_resolver: BackupFolderResolver
    packager: ArchivePackager
    transfer: TransferPipeline
    catalog: BackupCatalog

    # Local folder backups
    local_backups: LocalBackupStore
