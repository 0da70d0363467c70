"""Main application entry point."""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import List, Optional

from .api_clients import BaseRemoteClient, GitHubClient
from .config import AppSettings, ConfigurationError, load_settings, set_settings
from .core import ConflictResolver, SyncOrchestrator
from .scheduler import SyncTriggerManager
from .storage import DatabaseManager, LocalStorage, MetadataStore, StorageUnavailable, init_database
from .utils.logging import get_logger, setup_logging


class GitSyncApp:
    """Wires storage, the remote client, the orchestrator and the triggers."""

    def __init__(
        self,
        settings: AppSettings,
        client: Optional[BaseRemoteClient] = None,
        resolver: Optional[ConflictResolver] = None
    ):
        self.settings = settings
        self.logger = get_logger("GitSync")
        self.running = False

        self.client = client
        self.resolver = resolver
        self.db_manager: DatabaseManager | None = None
        self.store: MetadataStore | None = None
        self.local: LocalStorage | None = None
        self.orchestrator: SyncOrchestrator | None = None
        self.triggers: SyncTriggerManager | None = None

    async def startup(self):
        """Load metadata and build the engine; no trigger is started here."""
        self.logger.info(
            "Starting gitsync",
            version=self.settings.version,
            repository=f"{self.settings.github.owner}/{self.settings.github.repo}",
            branch=self.settings.github.branch
        )

        self.db_manager = init_database(self.settings.database.url, create_tables=True)
        self.store = MetadataStore(self.db_manager)
        await self.store.load()

        self.local = LocalStorage(self.settings.sync.local_root)
        if self.client is None:
            self.client = GitHubClient.from_settings(self.settings)

        self.orchestrator = SyncOrchestrator.from_settings(
            self.settings,
            client=self.client,
            store=self.store,
            local=self.local,
            resolver=self.resolver
        )

    async def shutdown(self):
        self.logger.info("Shutting down gitsync")
        self.running = False

        if self.triggers:
            await self.triggers.stop()

        if self.client:
            await self.client.close()

        if self.db_manager:
            self.db_manager.close()

        self.logger.info("gitsync stopped")

    async def run(self):
        """Run as a service until a shutdown signal is received."""
        await self.startup()

        try:
            await self.orchestrator.scan_local_changes()

            self.triggers = SyncTriggerManager.from_settings(self.settings, self.orchestrator)
            await self.triggers.start()
            self.triggers.mark_ready()

            self.running = True
            self.logger.info("gitsync started", strategy=self.settings.sync.strategy.value)

            while self.running:
                await asyncio.sleep(1)

        finally:
            await self.shutdown()

    async def sync_once(self):
        await self.startup()
        try:
            await self.orchestrator.scan_local_changes()
            return await self.orchestrator.sync()
        finally:
            await self.shutdown()

    async def pull(self):
        await self.startup()
        try:
            return await self.orchestrator.pull()
        finally:
            await self.shutdown()

    async def status(self, path: str) -> str:
        self.db_manager = init_database(self.settings.database.url, create_tables=True)
        self.store = MetadataStore(self.db_manager)
        self.local = LocalStorage(self.settings.sync.local_root)
        try:
            await self.store.load()
            return self.store.status(self._to_local_path(path)).value
        finally:
            self.db_manager.close()

    def _to_local_path(self, path: str) -> str:
        if Path(path).is_absolute():
            return self.local.relative(path)
        return path.strip("/")


def setup_signal_handlers(app: GitSyncApp):
    """Set up signal handlers for graceful shutdown."""
    def signal_handler(signum, frame):
        app.logger.info(f"Received signal {signum}")
        app.running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gitsync",
        description="Keep a local folder in sync with a GitHub repository"
    )
    parser.add_argument("--config", "-c", help="Path to a YAML or JSON configuration file")
    parser.add_argument("--log-level", help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("run", help="Run the service with the configured sync strategy")
    subparsers.add_parser("sync", help="Run one synchronization pass now")
    subparsers.add_parser("pull", help="Download remote changes without uploading")

    status_parser = subparsers.add_parser("status", help="Show the sync status of a file")
    status_parser.add_argument("path", help="File path relative to the local root")

    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = set_settings(load_settings(args.config))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(log_level=args.log_level)
    logger = get_logger("main")

    app = GitSyncApp(settings)

    try:
        if args.command == "run":
            setup_signal_handlers(app)
            await app.run()
            return 0

        if args.command == "status":
            print(await app.status(args.path))
            return 0

        if args.command == "sync":
            result = await app.sync_once()
        else:
            result = await app.pull()

        print(json.dumps(result.to_dict(), indent=2))
        return 0 if result.success else 1

    except StorageUnavailable as e:
        logger.error("Metadata storage unavailable", error=str(e))
        return 1


def cli():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    cli()
