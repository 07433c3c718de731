from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from ..config import Settings
from ..services.blocklist_store import BlocklistStore
from ..services.guild_settings_store import GuildSettingsStore
from ..services.stats import RuntimeStats
from ..utils import render_template
from .directory import GroupDirectory
from .models import GuildMode

log = logging.getLogger("sentinel.decision")

SleepFn = Callable[[float], Awaitable[Any]]


class DecisionEngine:
    """Decides whether a member must be dealt with, then notifies and/or kicks.

    Checks run in a fixed order and the first match wins: guild mode off,
    locally protected user, remote exemption, no active block entry, admin
    role. Only then is the member enforced against.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        blocklist: BlocklistStore,
        guild_settings: GuildSettingsStore,
        stats: Optional[RuntimeStats] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.blocklist = blocklist
        self.guild_settings = guild_settings
        self.stats = stats or RuntimeStats()
        self._sleep = sleep
        self._admin_roles = {r.lower() for r in settings.admin_roles}

    async def is_admin(self, directory: GroupDirectory, group_id: str, user_id: str) -> bool:
        try:
            member = await directory.get_member(group_id, user_id)
        except Exception:
            # Lookup failure means "cannot confirm", never "is admin".
            return False
        if member is None:
            return False
        return any(role.lower() in self._admin_roles for role in member.roles)

    async def _display_name(self, directory: GroupDirectory, group_id: str, user_id: str) -> str:
        try:
            member = await directory.get_member(group_id, user_id)
        except Exception:
            return user_id
        if member is None or not member.display_name:
            return user_id
        return member.display_name

    async def evaluate_and_act(
        self,
        group_id: Optional[str],
        identity_id: str,
        directory: GroupDirectory,
    ) -> bool:
        """Returns True only when the member was actually removed."""
        if not group_id:
            return False
        group_id = str(group_id)
        identity_id = str(identity_id)

        mode = await self.guild_settings.get_mode(group_id)
        if mode is GuildMode.OFF:
            return False

        if identity_id in self.settings.protected_users:
            return False

        if await self.blocklist.is_exempt(identity_id):
            return False

        entry = await self.blocklist.get_active_block(identity_id)
        if entry is None:
            return False

        reason = entry.reason or self.settings.default_block_reason

        if await self.is_admin(directory, group_id, identity_id):
            log.info("[guild %s] Admin exemption: skipping blocklisted admin %s", group_id, identity_id)
            return False

        log.info("[guild %s] Blocklisted user found: %s (reason: %s)", group_id, identity_id, reason)
        display_name = await self._display_name(directory, group_id, identity_id)

        if mode.notifies:
            template = self.settings.admin_notify_message if mode is GuildMode.NOTIFY else self.settings.kick_notify_message
            message = render_template(template, user=display_name, userId=identity_id, reason=reason, guild=group_id)
            await self._send(directory, group_id, message)

        if not mode.kicks:
            return False

        kicked = await self._kick_with_retry(directory, group_id, identity_id, display_name, reason)
        if kicked and self.settings.verify_kick_result:
            await self._verify_kick(directory, group_id, identity_id)
        return kicked

    async def _send(self, directory: GroupDirectory, group_id: str, message: str) -> None:
        try:
            await directory.send_notice(group_id, message)
            self.stats.notices_sent += 1
        except Exception as e:
            log.warning("[guild %s] Failed to send notice: %s", group_id, e)

    async def _kick_with_retry(
        self,
        directory: GroupDirectory,
        group_id: str,
        identity_id: str,
        display_name: str,
        reason: str,
    ) -> bool:
        attempts = max(1, int(self.settings.kick_retry_attempts))
        delay = max(0, self.settings.kick_retry_delay_ms) / 1000.0

        for attempt in range(attempts):
            try:
                await directory.remove_member(group_id, identity_id, reason=f"Blocklisted: {reason}")
            except Exception as e:
                log.debug("[guild %s] Kick attempt %d/%d for %s failed: %s", group_id, attempt + 1, attempts, identity_id, e)
                if attempt < attempts - 1:
                    await self._sleep(delay)
                    continue
                self.stats.kicks_failed += 1
                log.warning("[guild %s] Giving up on kicking %s after %d attempts: %s", group_id, identity_id, attempts, e)
                fail = render_template(
                    self.settings.kick_fail_message,
                    user=display_name,
                    userId=identity_id,
                    reason=str(e),
                    guild=group_id,
                )
                await self._send(directory, group_id, fail)
                return False

            self.stats.members_kicked += 1
            log.info("[guild %s] Kicked %s", group_id, identity_id)
            return True
        return False

    async def _verify_kick(self, directory: GroupDirectory, group_id: str, identity_id: str) -> None:
        await self._sleep(max(0, self.settings.kick_verify_delay_ms) / 1000.0)
        try:
            member = await directory.get_member(group_id, identity_id)
        except Exception:
            # Not resolvable any more; the kick took effect.
            return
        if member is not None:
            log.warning(
                "[guild %s] Kick verification failed, user is still a member: %s (check role hierarchy)",
                group_id,
                identity_id,
            )
