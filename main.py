"""Application entry point: wires services and runs the command line front end.

Usage:
    savecloud connect
    savecloud status
    savecloud upload <shop> <object_id> [--label LABEL] [--wine-prefix PATH] [--local]
    savecloud list <shop> <object_id> [--local]
    savecloud restore <shop> <object_id> <backup_id> [--wine-prefix PATH] [--local]
    savecloud delete <backup_id> [--local]
    savecloud disconnect
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger

from savecloud.capture.base import SaveCaptureTool
from savecloud.capture.ludusavi import LudusaviCaptureTool
from savecloud.config import Config, get_config
from savecloud.context import AppContext
from savecloud.core.catalog import BackupCatalog
from savecloud.core.events import LoggingNotifier, NotificationChannel
from savecloud.core.folder_resolver import BackupFolderResolver
from savecloud.core.local_backup import LocalBackupStore
from savecloud.core.locks import GameLocks
from savecloud.core.packager import ArchivePackager
from savecloud.core.token_manager import TokenManager
from savecloud.core.transfer import TransferPipeline
from savecloud.data.credential_store import CredentialStore
from savecloud.data.kv_store import KeyValueStore
from savecloud.exceptions import CloudSaveError
from savecloud.logger import setup_logger
from savecloud.models.backup_artifact import BackupArtifact
from savecloud.utils import format_size


def create_context(
    config: Config | None = None,
    notifier: NotificationChannel | None = None,
    capture_tool: SaveCaptureTool | None = None,
) -> AppContext:
    """Wire all services and return an AppContext."""
    config = config or get_config()
    notifier = notifier or LoggingNotifier()

    # Storage
    store = KeyValueStore(config.data_dir)
    credential_store = CredentialStore(store)

    # Session: silently stays unconfigured without client credentials
    token_manager = TokenManager(config, credential_store)
    token_manager.configure()

    # Backup services
    locks = GameLocks()
    folder_resolver = BackupFolderResolver(token_manager)
    packager = ArchivePackager(config, capture_tool or LudusaviCaptureTool(config.ludusavi_binary))
    transfer = TransferPipeline(token_manager, folder_resolver, packager, notifier, locks)
    catalog = BackupCatalog(token_manager, folder_resolver)
    local_backups = LocalBackupStore(config, packager, notifier, locks)

    return AppContext(
        config=config,
        store=store,
        credential_store=credential_store,
        notifier=notifier,
        token_manager=token_manager,
        folder_resolver=folder_resolver,
        packager=packager,
        transfer=transfer,
        catalog=catalog,
        local_backups=local_backups,
    )


def _print_backups(backups: list[BackupArtifact]) -> None:
    if not backups:
        print("No backups found.")
        return
    for backup in backups:
        label = f"  [{backup.label}]" if backup.label else ""
        print(f"{backup.id}  {backup.created_at}  {format_size(backup.size)}{label}")


async def _run(ctx: AppContext, args: argparse.Namespace) -> int:
    local = getattr(args, "local", False)
    try:
        if args.command == "connect":
            user = await ctx.token_manager.authenticate()
            print(f"Connected as {user.display_name} <{user.email}>")
        elif args.command == "status":
            status = ctx.token_manager.get_connection_status()
            if status.connected and status.user_info:
                print(f"Connected as {status.user_info.display_name} <{status.user_info.email}>")
            else:
                print("Not connected")
        elif args.command == "disconnect":
            await ctx.token_manager.disconnect()
            print("Disconnected")
        elif args.command == "upload":
            target = ctx.local_backups if local else ctx.transfer
            backup_id = await target.upload_save_game(
                args.shop,
                args.object_id,
                download_option_title=args.title,
                label=args.label,
                wine_prefix_path=args.wine_prefix,
            )
            print(f"Uploaded {backup_id}")
        elif args.command == "list":
            source = ctx.local_backups if local else ctx.catalog
            _print_backups(await source.list_backups(args.shop, args.object_id))
        elif args.command == "restore":
            target = ctx.local_backups if local else ctx.transfer
            await target.download_backup(
                args.shop, args.object_id, args.backup_id, wine_prefix_path=args.wine_prefix
            )
            print(f"Restored {args.backup_id}")
        elif args.command == "delete":
            target = ctx.local_backups if local else ctx.catalog
            await target.delete_backup(args.backup_id)
            print(f"Deleted {args.backup_id}")
        return 0
    except CloudSaveError as e:
        logger.debug(f"{args.command} failed: {e!r}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await ctx.token_manager.aclose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="savecloud", description="Back up and restore game saves.")
    parser.add_argument("--data-dir", type=Path, help="Configuration and state directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("connect", help="Sign in to Google Drive")
    sub.add_parser("status", help="Show the connected account")
    sub.add_parser("disconnect", help="Sign out and forget tokens")

    upload = sub.add_parser("upload", help="Back up a game's saves")
    upload.add_argument("shop")
    upload.add_argument("object_id")
    upload.add_argument("--title", help="Download option title to record")
    upload.add_argument("--label", help="Label for this backup")
    upload.add_argument("--wine-prefix", help="Wine prefix the game runs in")
    upload.add_argument("--local", action="store_true", help="Use the local backup folder")

    list_cmd = sub.add_parser("list", help="List a game's backups")
    list_cmd.add_argument("shop")
    list_cmd.add_argument("object_id")
    list_cmd.add_argument("--local", action="store_true", help="Use the local backup folder")

    restore = sub.add_parser("restore", help="Restore a backup")
    restore.add_argument("shop")
    restore.add_argument("object_id")
    restore.add_argument("backup_id")
    restore.add_argument("--wine-prefix", help="Wine prefix the game runs in now")
    restore.add_argument("--local", action="store_true", help="Use the local backup folder")

    delete = sub.add_parser("delete", help="Delete a backup")
    delete.add_argument("backup_id")
    delete.add_argument("--local", action="store_true", help="Use the local backup folder")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Application entry point."""
    args = build_parser().parse_args(argv)

    config = Config(args.data_dir) if args.data_dir else get_config()
    setup_logger(config.data_dir / "logs", level="DEBUG" if args.verbose else "INFO")

    ctx = create_context(config)
    return asyncio.run(_run(ctx, args))


if __name__ == "__main__":
    sys.exit(main())
