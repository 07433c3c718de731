from __future__ import annotations

import logging

from discord.ext import commands


class BaseCog(commands.Cog):
    """Base class for cogs with a per-cog logger."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot
        self.log = logging.getLogger(f"sentinel.cog.{self.__class__.__name__.lower()}")

    async def cog_load(self) -> None:
        self.log.info("Loaded %s", self.__class__.__name__)

    async def cog_unload(self) -> None:
        self.log.info("Unloaded %s", self.__class__.__name__)
