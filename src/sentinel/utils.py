from __future__ import annotations

import logging
import re
from typing import Any

import discord

from .constants import COLORS, MAX_EMBED_DESCRIPTION, MAX_EMBED_TITLE, MAX_MESSAGE_LENGTH

log = logging.getLogger("sentinel.utils")

_AT_TAG_RE = re.compile(r'<at\s+id="([^"]+)"\s*/>')
_MENTION_RE = re.compile(r"^<@!?(\d+)>$")


def parse_user_id(raw: str) -> str:
    """Normalize a user reference to a bare id.

    Accepts a raw id, a Discord mention (``<@123>`` / ``<@!123>``), an
    ``<at id="..."/>`` tag or a ``platform:id`` composite.
    """
    text = (raw or "").strip()
    if not text:
        return ""
    m = _AT_TAG_RE.search(text)
    if m:
        text = m.group(1)
    m = _MENTION_RE.match(text)
    if m:
        return m.group(1)
    if ":" in text:
        return text.split(":", 1)[1].strip()
    return text


def render_template(template: str, **values: Any) -> str:
    """Fill ``{name}`` placeholders; unknown placeholders are left as-is."""
    out = template
    for key, value in values.items():
        out = out.replace("{" + key + "}", str(value))
    return out


def truncate_text(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Truncate text to maximum length with ellipsis."""
    if len(text) <= max_length:
        return text
    return text[:max_length - 1] + "…"


def normalize_display_name(name: str) -> str:
    """Casefold a channel/role name and drop a leading emoji-like token."""
    n = name.strip()
    parts = n.split(maxsplit=1)
    if len(parts) == 2:
        head, tail = parts
        if not head.isalnum():
            n = tail
    return n.strip().casefold()


def find_text_channel_fuzzy(guild: discord.Guild, expected_name: str) -> discord.TextChannel | None:
    """Find a text channel by exact name or emoji-prefixed variant."""
    ch = discord.utils.get(guild.text_channels, name=expected_name)
    if ch:
        return ch
    target = normalize_display_name(expected_name)
    for c in guild.text_channels:
        if normalize_display_name(c.name) == target:
            return c
    return None


def safe_embed(title: str, description: str, color: int = COLORS["default"]) -> discord.Embed:
    """Create an embed with safe length limits."""
    if len(title) > MAX_EMBED_TITLE:
        title = title[:MAX_EMBED_TITLE - 1] + "…"
    if len(description) > MAX_EMBED_DESCRIPTION:
        description = description[:MAX_EMBED_DESCRIPTION - 1] + "…"
    return discord.Embed(title=title, description=description, color=color)


def error_embed(message: str) -> discord.Embed:
    return safe_embed("Error", message, COLORS["error"])


async def safe_response(
    interaction: discord.Interaction,
    content: str | None = None,
    embed: discord.Embed | None = None,
    ephemeral: bool = True,
) -> bool:
    """Respond to an interaction, falling back to a followup if already answered."""
    try:
        if interaction.response.is_done():
            await interaction.followup.send(content=content, embed=embed, ephemeral=ephemeral)
        else:
            await interaction.response.send_message(content=content, embed=embed, ephemeral=ephemeral)
        return True
    except discord.HTTPException as e:
        log.error("Failed to send response: %s", e)
        return False
