from __future__ import annotations

from dataclasses import replace

import pytest
import pytest_asyncio

from sentinel.blocklist.decision_engine import DecisionEngine
from sentinel.blocklist.models import GuildMode
from sentinel.config import Settings
from sentinel.database import initialize_database
from sentinel.services.blocklist_store import BlocklistStore
from sentinel.services.guild_settings_store import GuildSettingsStore
from sentinel.services.meta_store import MetaStore
from sentinel.services.request_queue_store import RequestQueueStore
from sentinel.testing.fakes import FakeGroupDirectory, FakeRemote

BASE_SETTINGS = Settings(
    token="discord-token",
    remote_api_url="http://authority.invalid",
    api_token="api-token",
    default_guild_mode="kick",
    kick_retry_delay_ms=0,
    kick_verify_delay_ms=0,
)


def make_settings(**overrides) -> Settings:
    return replace(BASE_SETTINGS, **overrides)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def sqlite_path(tmp_path) -> str:
    return str(tmp_path / "sentinel-test.sqlite3")


@pytest_asyncio.fixture
async def blocklist_store(sqlite_path) -> BlocklistStore:
    store = BlocklistStore(sqlite_path)
    await store.init()
    return store


@pytest_asyncio.fixture
async def queue_store(sqlite_path) -> RequestQueueStore:
    store = RequestQueueStore(sqlite_path)
    await store.init()
    return store


@pytest_asyncio.fixture
async def meta_store(sqlite_path) -> MetaStore:
    store = MetaStore(sqlite_path)
    await store.init()
    return store


@pytest_asyncio.fixture
async def guild_settings_store(sqlite_path, settings) -> GuildSettingsStore:
    store = GuildSettingsStore(sqlite_path, GuildMode.parse(settings.default_guild_mode))
    await initialize_database(sqlite_path, [store])
    return store


@pytest.fixture
def directory() -> FakeGroupDirectory:
    return FakeGroupDirectory()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def engine_factory(blocklist_store, guild_settings_store, sleeper):
    def _make(settings: Settings | None = None) -> DecisionEngine:
        return DecisionEngine(
            settings=settings or BASE_SETTINGS,
            blocklist=blocklist_store,
            guild_settings=guild_settings_store,
            sleep=sleeper,
        )

    return _make
