from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Literal, Optional

import discord
import psutil
from discord import app_commands
from discord.ext import commands

from ..base_cog import BaseCog
from ..blocklist.models import (
    AddRequest,
    CancelRequest,
    GuildMode,
    OutboundRequest,
    RemoveRequest,
    new_request_id,
    now_ms,
)
from ..constants import COLORS, ERROR_MESSAGES
from ..permissions import bot_owner_only
from ..services.periodic import PeriodicTask
from ..services.remote_client import RemoteError
from ..services.stats import RuntimeStats
from ..utils import parse_user_id, render_template, safe_embed

if TYPE_CHECKING:
    from ..bot import SentinelBot


def build_status_embed(
    *,
    instance_id: Optional[str],
    revision: str,
    mode: GuildMode,
    blocks: int,
    exempts: int,
    backlog: int,
    stats: RuntimeStats,
    memory_mb: float,
) -> discord.Embed:
    embed = safe_embed("Blocklist status", f"Instance `{instance_id}`", COLORS["info"])
    embed.add_field(name="Revision", value=f"`{revision or 'never synced'}`")
    embed.add_field(name="Server mode", value=f"`{mode.value}`")
    embed.add_field(name="Entries", value=f"{blocks} blocked / {exempts} exempt")
    embed.add_field(name="Offline queue", value=f"{backlog} pending, {stats.queue_dead_lettered} dead-lettered")
    embed.add_field(name="Syncs", value=f"{stats.syncs_ok} ok / {stats.syncs_failed} failed")
    embed.add_field(name="Kicks", value=f"{stats.members_kicked} ok / {stats.kicks_failed} failed")
    embed.add_field(name="Process", value=f"uptime {stats.uptime_seconds()}s, {memory_mb:.1f} MB")
    return embed


class BlocklistCog(BaseCog):
    """Blocklist enforcement: join handling, timers and /blocklist commands."""

    def __init__(self, bot: "SentinelBot") -> None:
        super().__init__(bot)
        self.bot: SentinelBot = bot
        self._started = False
        self._background: set[asyncio.Task] = set()
        self._sync_timer = PeriodicTask("blocklist-sync", self._sync_and_scan, bot.settings.sync_interval_seconds)
        self._drain_timer = PeriodicTask("queue-drain", self._drain, bot.settings.queue_drain_interval_seconds)

    async def cog_unload(self) -> None:
        await self._sync_timer.stop()
        await self._drain_timer.stop()
        for task in list(self._background):
            task.cancel()
        await super().cog_unload()

    def _spawn(self, coro, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # -------------------- Lifecycle + timers --------------------

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        # on_ready fires again after reconnects; start-up work runs once.
        if self._started:
            return
        self._started = True

        has_updates = await self.bot.sync_engine.sync()
        self._spawn(self._drain(), "sentinel-startup-drain")
        if has_updates:
            self._spawn(self._scan_all(), "sentinel-startup-scan")

        self._sync_timer.start()
        self._drain_timer.start()

    async def _sync_and_scan(self) -> None:
        if await self.bot.sync_engine.sync():
            await self._scan_all()

    async def _scan_all(self) -> None:
        self.log.info("New blocklist entries detected; scanning all guilds")
        await self.bot.scanner.scan_all_groups(self.bot.directories())

    async def _drain(self) -> None:
        await self.bot.offline_queue.drain()

    # -------------------- Membership events --------------------

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        settings = self.bot.settings
        if settings.skip_bot_members and member.bot:
            return

        guild_id = str(member.guild.id)
        user_id = str(member.id)
        try:
            if settings.enable_auto_reject and member.pending:
                if await self._auto_reject(guild_id, user_id):
                    return
            await self.bot.decision_engine.evaluate_and_act(guild_id, user_id, self.bot.directory)
        except Exception:
            self.log.exception("[guild %s] Failed to process join of %s", guild_id, user_id)

    async def _auto_reject(self, guild_id: str, user_id: str) -> bool:
        """Reject a pending applicant with an active block entry."""
        settings = self.bot.settings
        if user_id in settings.protected_users:
            return False
        if await self.bot.blocklist_store.is_exempt(user_id):
            return False
        if await self.bot.blocklist_store.get_active_block(user_id) is None:
            return False

        directory = self.bot.directory
        try:
            await directory.resolve_join_request(guild_id, user_id, approve=False, reason=settings.rejection_message)
        except Exception as e:
            self.log.warning("[guild %s] Failed to reject join request of %s: %s", guild_id, user_id, e)
            return False

        self.bot.stats.join_requests_rejected += 1
        self.log.info("[guild %s] Auto-rejected %s", guild_id, user_id)
        notice = render_template(settings.auto_reject_notify_message, user=user_id, userId=user_id, guild=guild_id)
        try:
            await directory.send_notice(guild_id, notice)
        except Exception as e:
            self.log.warning("[guild %s] Failed to send auto-reject notice: %s", guild_id, e)
        return True

    # -------------------- Commands --------------------

    blocklist = app_commands.Group(name="blocklist", description="Blocklist management", guild_only=True)

    async def _submit_or_queue(self, request: OutboundRequest) -> bool:
        """True when the remote accepted it now, False when it went to the offline queue."""
        try:
            await self.bot.remote.submit(request)
            return True
        except RemoteError as e:
            self.log.warning("Submitting %s request %s failed, queueing: %s", request.kind, request.request_id, e)
            await self.bot.offline_queue.enqueue_request(request)
            return False

    @blocklist.command(name="request", description="Ask the remote authority to blocklist a user")
    @app_commands.describe(user="User id or mention", reason="Why this user should be blocklisted")
    @app_commands.checks.has_permissions(kick_members=True)
    async def request(self, interaction: discord.Interaction, user: str, reason: str) -> None:
        if interaction.guild is None:
            await interaction.response.send_message(ERROR_MESSAGES["guild_only"], ephemeral=True)
            return
        reason = reason.strip()
        if not reason:
            await interaction.response.send_message("Please give a reason.", ephemeral=True)
            return

        user_id = parse_user_id(user)
        if not user_id:
            await interaction.response.send_message("Please give a user id or mention.", ephemeral=True)
            return
        if user_id in self.bot.settings.protected_users:
            await interaction.response.send_message("❌ This user is locally protected and cannot be blocklisted.", ephemeral=True)
            return
        if await self.bot.blocklist_store.is_exempt(user_id):
            await interaction.response.send_message("❌ This user is on the remote allowlist and cannot be blocklisted.", ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        request = AddRequest(
            request_id=new_request_id(),
            applicant_id=str(interaction.user.id),
            target_user_id=user_id,
            reason=reason,
            timestamp=now_ms(),
            guild_id=str(interaction.guild.id),
        )
        if await self._submit_or_queue(request):
            msg = (
                f"✅ Request submitted for review.\n🆔 Request ID: `{request.request_id}`\n"
                "(use `/blocklist cancel` to withdraw it)"
            )
        else:
            msg = (
                f"⚠️ Could not reach the server; the request was queued.\n🆔 Request ID: `{request.request_id}`\n"
                "It will be submitted automatically once the connection recovers. (use `/blocklist cancel` to withdraw it)"
            )
        await interaction.followup.send(msg, ephemeral=True)

    @blocklist.command(name="delete", description="Ask the remote authority to remove a user from the blocklist")
    @app_commands.describe(user="User id or mention", reason="Why this user should be removed")
    @app_commands.checks.has_permissions(kick_members=True)
    async def delete(self, interaction: discord.Interaction, user: str, reason: str) -> None:
        reason = reason.strip()
        user_id = parse_user_id(user)
        if not reason or not user_id:
            await interaction.response.send_message("Please give a user and a reason.", ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        request = RemoveRequest(
            request_id=new_request_id(),
            applicant_id=str(interaction.user.id),
            target_user_id=user_id,
            reason=reason,
            timestamp=now_ms(),
        )
        if await self._submit_or_queue(request):
            msg = f"✅ Removal request submitted.\n🆔 Request ID: `{request.request_id}`"
        else:
            msg = f"⚠️ Network failure; the removal request was queued.\n🆔 Request ID: `{request.request_id}`"
        await interaction.followup.send(msg, ephemeral=True)

    @blocklist.command(name="cancel", description="Withdraw a previous request")
    @app_commands.describe(request_id="ID of the request to withdraw")
    @app_commands.checks.has_permissions(kick_members=True)
    async def cancel(self, interaction: discord.Interaction, request_id: str) -> None:
        target = request_id.strip()
        if not target:
            await interaction.response.send_message("Please give the request ID to withdraw.", ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        request = CancelRequest(
            request_id=new_request_id(),
            target_request_id=target,
            applicant_id=str(interaction.user.id),
            timestamp=now_ms(),
        )
        if await self._submit_or_queue(request):
            msg = f"✅ Withdrawal of request `{target}` sent."
        else:
            msg = f"⚠️ Network failure; the withdrawal of `{target}` was queued."
        await interaction.followup.send(msg, ephemeral=True)

    @blocklist.command(name="mode", description="Set how this server handles blocklisted members")
    @app_commands.describe(mode="off, notify, kick or both")
    @app_commands.checks.has_permissions(manage_guild=True)
    async def mode(self, interaction: discord.Interaction, mode: Literal["off", "notify", "kick", "both"]) -> None:
        assert interaction.guild is not None
        try:
            parsed = GuildMode.parse(mode)
        except ValueError:
            valid = ", ".join(m.value for m in GuildMode)
            await interaction.response.send_message(f"Invalid mode. Valid: {valid}", ephemeral=True)
            return
        await self.bot.guild_settings_store.set_mode(str(interaction.guild.id), parsed)
        await interaction.response.send_message(f"This server's mode is now `{parsed.value}`.", ephemeral=True)

    @blocklist.command(name="scan", description="Scan this server's members against the blocklist")
    @app_commands.checks.has_permissions(manage_guild=True)
    async def scan(self, interaction: discord.Interaction) -> None:
        assert interaction.guild is not None
        await interaction.response.send_message("🔍 Scanning this server...", ephemeral=True)
        result = await self.bot.scanner.scan_group(str(interaction.guild.id), self.bot.directory)
        if result.error:
            await interaction.followup.send(f"⚠️ Scan failed: {result.error}", ephemeral=True)
            return
        await interaction.followup.send(
            f"✅ Scan finished. Found {result.total} blocklisted member(s), handled {result.handled}.",
            ephemeral=True,
        )

    @blocklist.command(name="scan_all", description="Scan every server (heavy)")
    @bot_owner_only()
    async def scan_all(self, interaction: discord.Interaction) -> None:
        await interaction.response.send_message("🚀 Scanning all servers, this can take a while...", ephemeral=True)
        total_guilds = len(self.bot.guilds)
        summary = await self.bot.scanner.scan_all_groups(self.bot.directories())
        await interaction.followup.send(
            f"✅ Scan of all servers finished.\nServers scanned: {summary.processed_groups}/{total_guilds}\n"
            f"Blocklisted members handled: {summary.handled}",
            ephemeral=True,
        )

    @blocklist.command(name="status", description="Show sync and queue status")
    @app_commands.checks.has_permissions(manage_guild=True)
    async def status(self, interaction: discord.Interaction) -> None:
        assert interaction.guild is not None
        await interaction.response.defer(ephemeral=True)

        revision = await self.bot.meta_store.get_revision()
        blocks = await self.bot.blocklist_store.count_blocks()
        exempts = await self.bot.blocklist_store.count_exempts()
        backlog = await self.bot.request_queue_store.count()
        mode = await self.bot.guild_settings_store.get_mode(str(interaction.guild.id))
        stats = self.bot.stats
        memory_mb = psutil.Process().memory_info().rss / 1024 / 1024

        embed = build_status_embed(
            instance_id=self.bot.instance_id,
            revision=revision,
            mode=mode,
            blocks=blocks,
            exempts=exempts,
            backlog=backlog,
            stats=stats,
            memory_mb=memory_mb,
        )
        await interaction.followup.send(embed=embed, ephemeral=True)
