from __future__ import annotations

import asyncio
import logging
from typing import Optional

import discord
from discord.ext import commands

from .blocklist.decision_engine import DecisionEngine
from .blocklist.directory import DiscordGroupDirectory, GroupDirectory
from .blocklist.models import GuildMode
from .blocklist.offline_queue import OfflineQueue
from .blocklist.scanner import GroupScanner
from .blocklist.sync_engine import SyncEngine
from .cogs.blocklist import BlocklistCog
from .config import Settings
from .database import initialize_database
from .error_handlers import setup_error_handlers
from .services.blocklist_store import BlocklistStore
from .services.guild_settings_store import GuildSettingsStore
from .services.meta_store import MetaStore
from .services.remote_client import RemoteAuthorityClient
from .services.request_queue_store import RequestQueueStore
from .services.stats import RuntimeStats

log = logging.getLogger("sentinel.bot")


class _CommandSyncManager:
    def __init__(self, bot: "SentinelBot") -> None:
        self.bot = bot
        self._lock = asyncio.Lock()

    async def sync_startup(self) -> None:
        async with self._lock:
            guild_id = self.bot.settings.sync_guild_id
            if guild_id:
                guild = discord.Object(id=guild_id)
                self.bot.tree.copy_global_to(guild=guild)
                await self.bot.tree.sync(guild=guild)
                log.info("Commands synced to guild %d", guild_id)
            else:
                await self.bot.tree.sync()
                log.info("Commands synced globally")
            for c in self.bot.tree.get_commands():
                log.info(" - /%s", c.name)


class SentinelBot(commands.Bot):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        # Member join events and member listing need the privileged members intent.
        intents.members = True
        intents.message_content = False

        log.info("INTENTS: guilds=%s members=%s", intents.guilds, intents.members)

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            allowed_mentions=discord.AllowedMentions.none(),
            help_command=None,
        )

        self.settings = settings
        self.stats = RuntimeStats()

        default_mode = GuildMode.parse(settings.default_guild_mode, default=GuildMode.OFF)
        self.blocklist_store = BlocklistStore(settings.sqlite_path)
        self.request_queue_store = RequestQueueStore(settings.sqlite_path)
        self.meta_store = MetaStore(settings.sqlite_path)
        self.guild_settings_store = GuildSettingsStore(settings.sqlite_path, default_mode)

        self.remote = RemoteAuthorityClient(settings.remote_api_url, settings.api_token)
        self.directory = DiscordGroupDirectory(self, settings.notice_channel_name)

        self.decision_engine = DecisionEngine(
            settings=settings,
            blocklist=self.blocklist_store,
            guild_settings=self.guild_settings_store,
            stats=self.stats,
        )
        self.scanner = GroupScanner(
            settings=settings,
            blocklist=self.blocklist_store,
            decision_engine=self.decision_engine,
            stats=self.stats,
        )

        # Built in setup_hook once the instance id is known.
        self.instance_id: Optional[str] = None
        self.sync_engine: Optional[SyncEngine] = None
        self.offline_queue: Optional[OfflineQueue] = None

        self._sync_mgr = _CommandSyncManager(self)

    def directories(self) -> list[GroupDirectory]:
        """Every connected platform account; a discord.py process has one."""
        return [self.directory]

    async def setup_hook(self) -> None:
        await initialize_database(
            self.settings.sqlite_path,
            [self.blocklist_store, self.request_queue_store, self.meta_store, self.guild_settings_store],
        )

        self.instance_id = await self.meta_store.ensure_instance_uuid()
        self.sync_engine = SyncEngine(
            remote=self.remote,
            blocklist=self.blocklist_store,
            meta=self.meta_store,
            instance_id=self.instance_id,
            stats=self.stats,
        )
        self.offline_queue = OfflineQueue(
            store=self.request_queue_store,
            remote=self.remote,
            instance_id=self.instance_id,
            stats=self.stats,
        )

        await setup_error_handlers(self)

        await self.add_cog(BlocklistCog(self))
        log.info("Loaded cog: BlocklistCog")

        await self._sync_mgr.sync_startup()
        log.info("Command sync complete")

    async def close(self) -> None:
        try:
            cog = self.get_cog("BlocklistCog")
            if cog is not None:
                await self.remove_cog("BlocklistCog")
            await self.remote.close()
        finally:
            await super().close()
