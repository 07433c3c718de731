from __future__ import annotations

import discord
from discord import app_commands

from .constants import ERROR_MESSAGES


async def is_bot_owner(client: discord.Client, user: discord.abc.User) -> bool:
    """OWNER_ID when configured, otherwise the application owner/team."""
    settings = getattr(client, "settings", None)
    owner_id = getattr(settings, "owner_id", 0)
    if owner_id:
        return user.id == owner_id
    is_owner = getattr(client, "is_owner", None)
    if is_owner is None:
        return False
    try:
        return bool(await is_owner(user))
    except discord.HTTPException:
        return False


def bot_owner_only():
    """Restrict an app command to the bot owner."""

    async def predicate(interaction: discord.Interaction) -> bool:
        if not await is_bot_owner(interaction.client, interaction.user):
            await interaction.response.send_message(ERROR_MESSAGES["owner_only"], ephemeral=True)
            return False
        return True

    return app_commands.check(predicate)
