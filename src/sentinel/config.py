from __future__ import annotations

import os
from dataclasses import dataclass, field

GUILD_MODES = ("off", "notify", "kick", "both")


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _get_str(name: str, default: str) -> str:
    return os.getenv(name, default).strip() or default


def _get_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(p.strip() for p in raw.split(",") if p.strip())


def _get_template(name: str, default: str) -> str:
    # .env files can't hold real newlines without quoting, so accept "\n" too.
    return _get_str(name, default).replace("\\n", "\n")


@dataclass(frozen=True)
class Settings:
    token: str
    remote_api_url: str
    api_token: str

    # Policy
    admin_roles: tuple[str, ...] = ("owner", "admin")
    protected_users: frozenset[str] = field(default_factory=frozenset)
    default_guild_mode: str = "off"

    # Behaviour switches
    enable_auto_reject: bool = True
    skip_bot_members: bool = True
    kick_retry_attempts: int = 3
    kick_retry_delay_ms: int = 2000
    verify_kick_result: bool = True
    kick_verify_delay_ms: int = 2000

    # Timers
    sync_interval_seconds: int = 300
    queue_drain_interval_seconds: int = 60

    # Where notices go when there is no triggering message to reply to
    notice_channel_name: str = "mod-logs"

    # Message templates
    rejection_message: str = "Your account has been flagged as a security risk."
    admin_notify_message: str = "Blocklisted user detected: {user} ({userId}).\nReason: {reason}"
    kick_notify_message: str = "Removing blocklisted user {user} ({userId})...\nReason: {reason}"
    kick_fail_message: str = "⚠️ Could not remove user {user}.\nError: {reason}"
    auto_reject_notify_message: str = "🚫 Automatically rejected blocklisted user {user} ({userId})."
    default_block_reason: str = "Blocklisted account"

    # Runtime
    sqlite_path: str = "sentinel.sqlite3"
    log_level: str = "INFO"
    owner_id: int = 0
    sync_guild_id: int = 0
    port: int = 10000


def load_settings() -> Settings:
    token = os.getenv("DISCORD_TOKEN", "").strip()
    if not token:
        raise RuntimeError("DISCORD_TOKEN is required")
    remote_api_url = os.getenv("REMOTE_API_URL", "").strip().rstrip("/")
    if not remote_api_url:
        raise RuntimeError("REMOTE_API_URL is required")
    api_token = os.getenv("API_TOKEN", "").strip()
    if not api_token:
        raise RuntimeError("API_TOKEN is required")

    mode = _get_str("DEFAULT_GUILD_MODE", "off").lower()
    if mode not in GUILD_MODES:
        mode = "off"

    return Settings(
        token=token,
        remote_api_url=remote_api_url,
        api_token=api_token,
        admin_roles=_get_list("ADMIN_ROLES", ("owner", "admin")),
        protected_users=frozenset(_get_list("PROTECTED_USERS", ())),
        default_guild_mode=mode,
        enable_auto_reject=_get_bool("ENABLE_AUTO_REJECT", True),
        skip_bot_members=_get_bool("SKIP_BOT_MEMBERS", True),
        # At least one removal attempt, otherwise "kick" mode could never kick
        kick_retry_attempts=max(1, _get_int("KICK_RETRY_ATTEMPTS", 3)),
        kick_retry_delay_ms=max(0, _get_int("KICK_RETRY_DELAY_MS", 2000)),
        verify_kick_result=_get_bool("VERIFY_KICK_RESULT", True),
        kick_verify_delay_ms=max(0, _get_int("KICK_VERIFY_DELAY_MS", 2000)),
        sync_interval_seconds=max(10, _get_int("SYNC_INTERVAL_SECONDS", 300)),
        queue_drain_interval_seconds=max(5, _get_int("QUEUE_DRAIN_INTERVAL_SECONDS", 60)),
        notice_channel_name=_get_str("NOTICE_CHANNEL_NAME", "mod-logs"),
        rejection_message=_get_template("REJECTION_MESSAGE", Settings.rejection_message),
        admin_notify_message=_get_template("ADMIN_NOTIFY_MESSAGE", Settings.admin_notify_message),
        kick_notify_message=_get_template("KICK_NOTIFY_MESSAGE", Settings.kick_notify_message),
        kick_fail_message=_get_template("KICK_FAIL_MESSAGE", Settings.kick_fail_message),
        auto_reject_notify_message=_get_template("AUTO_REJECT_NOTIFY_MESSAGE", Settings.auto_reject_notify_message),
        default_block_reason=_get_str("DEFAULT_BLOCK_REASON", Settings.default_block_reason),
        sqlite_path=_get_str("SQLITE_PATH", "sentinel.sqlite3"),
        log_level=_get_str("LOG_LEVEL", "INFO"),
        owner_id=_get_int("OWNER_ID", 0),
        sync_guild_id=_get_int("SYNC_GUILD_ID", 0),
        port=_get_int("PORT", 10000),
    )
