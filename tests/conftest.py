"""Shared fixtures for HealthChain Notify tests.

Every test gets its own SQLite database under pytest's tmp_path, and all
providers run in dry-run mode unless a test swaps in a scripted provider.
"""

from typing import Any, Dict, List, Optional

import pytest

from healthchain_notify.core.config import EmailConfig, PushConfig, SmsConfig
from healthchain_notify.core.models import Channel, RetryPolicy
from healthchain_notify.database.manager import DatabaseManager
from healthchain_notify.notifications.delivery import DispatchQueue
from healthchain_notify.notifications.errors import ProviderError
from healthchain_notify.notifications.gateway import RealtimeGateway
from healthchain_notify.notifications.manager import NotificationManager
from healthchain_notify.notifications.providers import (
    ChannelProvider,
    ContactResolver,
    EmailProvider,
    InAppProvider,
    ProviderRegistry,
    PushProvider,
    SmsProvider,
)
from healthchain_notify.notifications.records import RecordStore
from healthchain_notify.notifications.templates import TemplateRenderer, TemplateStore
from healthchain_notify.notifications.worker import DeliveryWorker


class ScriptedProvider(ChannelProvider):
    """Provider that fails a fixed number of times before succeeding."""

    def __init__(self, channel: Channel, failures: int = 0):
        self.channel = channel
        super().__init__()
        self.failures = failures
        self.calls: List[Dict[str, Any]] = []

    async def send(self, target: str, content: str, *, subject: Optional[str] = None,
                   data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self.calls.append({"target": target, "content": content, "subject": subject, "data": data})
        if len(self.calls) <= self.failures:
            raise ProviderError(f"scripted failure {len(self.calls)}")
        return {"success": True}


class FakeConnection:
    """Stand-in for a websocket connection."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[str] = []
        self.closed = False

    async def send_str(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
async def database(tmp_path):
    """Initialized database in a temporary directory."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'notify.db'}")
    await manager.initialize()
    yield manager
    await manager.close()


@pytest.fixture
def template_store(database):
    return TemplateStore(database)


@pytest.fixture
def records(database):
    return RecordStore(database)


@pytest.fixture
def queue(database):
    return DispatchQueue(database, lease_seconds=60)


@pytest.fixture
def gateway():
    return RealtimeGateway()


@pytest.fixture
def providers(gateway):
    """Registry with every provider in dry-run mode."""
    return ProviderRegistry([
        SmsProvider(SmsConfig()),
        EmailProvider(EmailConfig()),
        PushProvider(PushConfig()),
        InAppProvider(gateway),
    ])


@pytest.fixture
def manager(template_store, records, queue):
    return NotificationManager(
        templates=template_store,
        renderer=TemplateRenderer(),
        records=records,
        queue=queue,
        retry_policy=RetryPolicy(),
    )


@pytest.fixture
def worker(queue, records, providers):
    return DeliveryWorker(
        queue=queue,
        records=records,
        providers=providers,
        resolver=ContactResolver(),
        concurrency=5,
        poll_interval=0.05,
        send_timeout=5,
    )


@pytest.fixture
async def welcome_templates(template_store):
    """The `welcome` template for EMAIL, SMS and IN_APP (no PUSH)."""
    await template_store.upsert("welcome", Channel.EMAIL, "Hello {{name}}!")
    await template_store.upsert("welcome", Channel.SMS, "Welcome {{name}}")
    await template_store.upsert("welcome", Channel.IN_APP, "Hi {{name}}, welcome aboard")


@pytest.fixture
def make_connection():
    """Factory for fake websocket connections."""
    return FakeConnection


@pytest.fixture
def scripted_registry(gateway):
    """Factory building a registry whose provider for `channel` fails `failures` times."""
    def build(channel: Channel, failures: int = 0):
        scripted = ScriptedProvider(channel, failures)
        others = {
            Channel.SMS: SmsProvider(SmsConfig()),
            Channel.EMAIL: EmailProvider(EmailConfig()),
            Channel.PUSH: PushProvider(PushConfig()),
            Channel.IN_APP: InAppProvider(gateway),
        }
        others[channel] = scripted
        return ProviderRegistry(others.values()), scripted

    return build
