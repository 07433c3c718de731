from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

import discord

from ..constants import MAX_MESSAGE_LENGTH
from ..utils import find_text_channel_fuzzy, truncate_text

log = logging.getLogger("sentinel.directory")


class DirectoryError(Exception):
    """The group platform could not complete a lookup or action."""


@dataclass(frozen=True)
class MemberInfo:
    user_id: str
    display_name: str
    roles: tuple[str, ...] = ()
    is_bot: bool = False
    pending: bool = False


@runtime_checkable
class GroupDirectory(Protocol):
    """What the engines need from a group platform connection."""

    name: str

    async def get_member(self, group_id: str, user_id: str) -> Optional[MemberInfo]:
        """Return the member, or None when the user is not in the group."""
        ...

    async def list_members(self, group_id: str) -> list[MemberInfo]:
        ...

    async def list_group_ids(self) -> list[str]:
        ...

    async def remove_member(self, group_id: str, user_id: str, reason: Optional[str] = None) -> None:
        ...

    async def resolve_join_request(self, group_id: str, user_id: str, approve: bool, reason: Optional[str] = None) -> None:
        ...

    async def send_notice(self, group_id: str, content: str) -> None:
        ...


class DiscordGroupDirectory:
    """GroupDirectory over a connected discord.py client.

    Role names are reported lowercased, plus ``owner`` for the guild owner and
    ``admin`` for members with the Administrator permission.
    """

    def __init__(self, client: discord.Client, notice_channel_name: str = "mod-logs") -> None:
        self.client = client
        self.notice_channel_name = notice_channel_name

    @property
    def name(self) -> str:
        user = self.client.user
        return f"bot:{user.id}" if user else "bot:?"

    async def _guild(self, group_id: str) -> discord.Guild:
        guild = self.client.get_guild(int(group_id))
        if guild is not None:
            return guild
        try:
            return await self.client.fetch_guild(int(group_id))
        except discord.HTTPException as e:
            raise DirectoryError(f"guild {group_id} unavailable: {e}") from e

    def _to_info(self, guild: discord.Guild, member: discord.Member) -> MemberInfo:
        roles = [r.name.lower() for r in member.roles if not r.is_default()]
        if guild.owner_id == member.id:
            roles.append("owner")
        if member.guild_permissions.administrator:
            roles.append("admin")
        return MemberInfo(
            user_id=str(member.id),
            display_name=member.display_name,
            roles=tuple(roles),
            is_bot=member.bot,
            pending=bool(getattr(member, "pending", False)),
        )

    async def get_member(self, group_id: str, user_id: str) -> Optional[MemberInfo]:
        guild = await self._guild(group_id)
        member = guild.get_member(int(user_id))
        if member is None:
            try:
                member = await guild.fetch_member(int(user_id))
            except discord.NotFound:
                return None
        return self._to_info(guild, member)

    async def list_members(self, group_id: str) -> list[MemberInfo]:
        guild = await self._guild(group_id)
        if not guild.chunked:
            await guild.chunk(cache=True)
        return [self._to_info(guild, m) for m in guild.members]

    async def list_group_ids(self) -> list[str]:
        return [str(g.id) for g in self.client.guilds]

    async def remove_member(self, group_id: str, user_id: str, reason: Optional[str] = None) -> None:
        guild = await self._guild(group_id)
        await guild.kick(discord.Object(id=int(user_id)), reason=reason)

    async def resolve_join_request(self, group_id: str, user_id: str, approve: bool, reason: Optional[str] = None) -> None:
        # Discord has no join-request API for bots; a pending member (membership
        # screening not passed yet) is the closest equivalent, and rejecting
        # means removing them before they gain access.
        if approve:
            return
        guild = await self._guild(group_id)
        await guild.kick(discord.Object(id=int(user_id)), reason=reason)

    async def send_notice(self, group_id: str, content: str) -> None:
        content = truncate_text(content, MAX_MESSAGE_LENGTH)
        no_pings = discord.AllowedMentions.none()
        guild = await self._guild(group_id)
        channel = find_text_channel_fuzzy(guild, self.notice_channel_name) or guild.system_channel
        if channel is None:
            raise DirectoryError(f"guild {group_id} has no #{self.notice_channel_name} or system channel")
        await channel.send(content, allowed_mentions=no_pings)
