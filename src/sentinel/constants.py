from __future__ import annotations

from typing import Final

# Discord limits
MAX_MESSAGE_LENGTH: Final[int] = 2000
MAX_EMBED_DESCRIPTION: Final[int] = 4096
MAX_EMBED_TITLE: Final[int] = 256

# Sync protocol
SYNC_UPSERT_BATCH_SIZE: Final[int] = 100
SYNC_TIMEOUT_SECONDS: Final[float] = 10.0

# Offline request queue
QUEUE_DRAIN_LIMIT: Final[int] = 10
QUEUE_MAX_RETRIES: Final[int] = 5
OFFLINE_RETRY_TIMEOUT_SECONDS: Final[float] = 5.0

# Scanner fan-out per batch
SCAN_BATCH_SIZE: Final[int] = 5

# Meta keys
META_SYNC_REVISION: Final[str] = "sync_revision"
META_INSTANCE_UUID: Final[str] = "instance_uuid"

# Colors (hex values)
COLORS = {
    "default": 0x5865F2,
    "error": 0xED4245,
    "info": 0x3498DB,
}

ERROR_MESSAGES = {
    "missing_permissions": "You don't have permission to use this command.",
    "guild_only": "This command can only be used in a server.",
    "owner_only": "Only the bot owner can run this command.",
    "unexpected": "Something went wrong running that command.",
}
