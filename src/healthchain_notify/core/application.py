"""
Core application wiring for HealthChain Notify.
"""

import asyncio
import logging
import signal
from pathlib import Path
from typing import List, Optional

from ruamel.yaml import YAML

from .config import AppConfig
from .models import Channel, Template
from ..database.manager import DatabaseManager
from ..notifications.delivery import DispatchQueue
from ..notifications.gateway import RealtimeGateway
from ..notifications.manager import NotificationManager
from ..notifications.providers import (
    ContactResolver,
    EmailProvider,
    InAppProvider,
    ProviderRegistry,
    PushProvider,
    SmsProvider,
)
from ..notifications.records import RecordStore
from ..notifications.templates import TemplateStore
from ..notifications.worker import DeliveryWorker
from ..utils.logging import DeliveryLogger, setup_logging
from ..web.server import NotificationServer

logger = logging.getLogger(__name__)


class TemplateFileError(Exception):
    """Template seed file is malformed."""
    pass


class NotificationApplication:
    """Main application class for HealthChain Notify."""

    def __init__(self, config: AppConfig):
        """
        Initialize the application.

        Args:
            config: Application configuration
        """
        self.config = config
        self.database_manager: Optional[DatabaseManager] = None
        self.delivery_logger: Optional[DeliveryLogger] = None
        self.templates: Optional[TemplateStore] = None
        self.records: Optional[RecordStore] = None
        self.queue: Optional[DispatchQueue] = None
        self.gateway: Optional[RealtimeGateway] = None
        self.providers: Optional[ProviderRegistry] = None
        self.manager: Optional[NotificationManager] = None
        self.worker: Optional[DeliveryWorker] = None
        self.web_server: Optional[NotificationServer] = None
        self.running = False
        self._shutdown_event = asyncio.Event()

    async def initialize(self, configure_logging: bool = True) -> None:
        """Initialize the application components."""
        if configure_logging:
            _, self.delivery_logger = setup_logging(self.config.logging)
        else:
            self.delivery_logger = DeliveryLogger()
        logger.info("Initializing HealthChain Notify")

        self.database_manager = DatabaseManager(
            self.config.database_url, echo=self.config.database.echo
        )
        await self.database_manager.initialize()

        self.templates = TemplateStore(self.database_manager)
        self.records = RecordStore(self.database_manager)
        self.queue = DispatchQueue(self.database_manager, lease_seconds=self.config.queue.lease_seconds)
        self.gateway = RealtimeGateway()

        self.providers = ProviderRegistry([
            SmsProvider(self.config.sms),
            EmailProvider(self.config.email),
            PushProvider(self.config.push),
            InAppProvider(self.gateway),
        ])
        for channel, description in self.providers.describe().items():
            mode = "dry-run" if description["dry_run"] else "live"
            logger.info(f"{channel} provider ready ({mode})")

        self.manager = NotificationManager.from_config(
            templates=self.templates,
            records=self.records,
            queue=self.queue,
            queue_config=self.config.queue,
            notifications_config=self.config.notifications,
            delivery_logger=self.delivery_logger,
        )

        self.worker = DeliveryWorker(
            queue=self.queue,
            records=self.records,
            providers=self.providers,
            resolver=ContactResolver(),
            delivery_logger=self.delivery_logger,
            concurrency=self.config.queue.concurrency,
            poll_interval=self.config.queue.poll_interval_seconds,
            send_timeout=self.config.queue.send_timeout_seconds,
            retention_hours=self.config.queue.retention_hours,
        )

        if self.config.http_server.enabled:
            self.web_server = NotificationServer(
                manager=self.manager,
                templates=self.templates,
                database=self.database_manager,
                queue=self.queue,
                gateway=self.gateway,
                providers=self.providers,
                config=self.config.http_server,
            )

        logger.info("HealthChain Notify initialized")

    async def load_templates(self, path: Path) -> List[Template]:
        """Upsert templates from a YAML file with a top-level `templates` list."""
        path = Path(path)
        yaml = YAML(typ='safe')
        with open(path, 'r') as f:
            data = yaml.load(f) or {}

        entries = data.get("templates") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise TemplateFileError(f"{path}: expected a top-level 'templates' list")

        loaded = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict) or not all(entry.get(k) for k in ("key", "channel", "body")):
                raise TemplateFileError(f"{path}: entry {index} needs key, channel and body")
            try:
                channel = Channel(str(entry["channel"]).upper())
            except ValueError as e:
                raise TemplateFileError(f"{path}: entry {index} has unknown channel {entry['channel']}") from e
            loaded.append(await self.templates.upsert(str(entry["key"]), channel, str(entry["body"])))

        logger.info(f"Loaded {len(loaded)} templates from {path}")
        return loaded

    async def shutdown(self) -> None:
        """Shutdown the application gracefully."""
        logger.info("Shutting down HealthChain Notify")

        self.running = False
        self._shutdown_event.set()

        if self.worker:
            await self.worker.stop()

        if self.web_server:
            await self.web_server.stop()

        if self.providers:
            await self.providers.close()

        if self.database_manager:
            await self.database_manager.close()

        logger.info("Application shutdown complete")

    async def run(self) -> None:
        """Serve the API and run the delivery worker until signalled."""
        await self.initialize()

        self._setup_signal_handlers()
        self.running = True

        worker_task = None
        try:
            if self.web_server:
                await self.web_server.start()
            worker_task = asyncio.create_task(self.worker.start())

            await self._shutdown_event.wait()
        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
        finally:
            await self.shutdown()
            if worker_task:
                await asyncio.gather(worker_task, return_exceptions=True)

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown")
            self._shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)
