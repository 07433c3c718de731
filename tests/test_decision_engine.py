from __future__ import annotations

import logging

import pytest

from sentinel.blocklist.models import BlockEntry, ExemptEntry, GuildMode

from .conftest import make_settings

GUILD = "g1"


async def _block(store, uid: str, reason: str = "spam", disabled: bool = False) -> None:
    await store.apply_delta(block_upserts=[BlockEntry(identity_id=uid, reason=reason, disabled=disabled)])


@pytest.mark.asyncio
async def test_exempt_overrides_block(engine_factory, blocklist_store, directory):
    await _block(blocklist_store, "u1")
    await blocklist_store.apply_delta(exempt_upserts=[ExemptEntry(identity_id="u1")])
    directory.add_member(GUILD, "u1")

    assert await engine_factory().evaluate_and_act(GUILD, "u1", directory) is False
    assert directory.kick_attempts == []
    assert directory.notices == []


@pytest.mark.asyncio
async def test_protected_user_is_never_touched(engine_factory, blocklist_store, directory):
    await _block(blocklist_store, "u1")
    directory.add_member(GUILD, "u1")
    engine = engine_factory(make_settings(protected_users=frozenset({"u1"})))

    assert await engine.evaluate_and_act(GUILD, "u1", directory) is False
    assert directory.kick_attempts == []


@pytest.mark.asyncio
async def test_unlisted_or_disabled_entry_is_ignored(engine_factory, blocklist_store, directory):
    await _block(blocklist_store, "u2", disabled=True)
    directory.add_member(GUILD, "u1")
    directory.add_member(GUILD, "u2")
    engine = engine_factory()

    assert await engine.evaluate_and_act(GUILD, "u1", directory) is False
    assert await engine.evaluate_and_act(GUILD, "u2", directory) is False
    assert directory.kick_attempts == []


@pytest.mark.asyncio
async def test_missing_group_or_mode_off(engine_factory, blocklist_store, guild_settings_store, directory):
    await _block(blocklist_store, "u1")
    directory.add_member(GUILD, "u1")
    engine = engine_factory()

    assert await engine.evaluate_and_act(None, "u1", directory) is False
    await guild_settings_store.set_mode(GUILD, GuildMode.OFF)
    assert await engine.evaluate_and_act(GUILD, "u1", directory) is False
    assert directory.kick_attempts == []


@pytest.mark.asyncio
async def test_admin_is_exempt_and_logged(engine_factory, blocklist_store, directory, caplog):
    await _block(blocklist_store, "u1")
    directory.add_member(GUILD, "u1", roles=("Admin",))

    with caplog.at_level(logging.INFO, logger="sentinel.decision"):
        assert await engine_factory().evaluate_and_act(GUILD, "u1", directory) is False

    assert directory.kick_attempts == []
    assert "Admin exemption" in caplog.text


@pytest.mark.asyncio
async def test_lookup_failure_is_not_admin(engine_factory, blocklist_store, directory):
    await _block(blocklist_store, "u1")
    directory.fail_lookups = True

    assert await engine_factory().evaluate_and_act(GUILD, "u1", directory) is True
    assert directory.kicked == [(GUILD, "u1", "Blocklisted: spam")]


@pytest.mark.asyncio
async def test_kick_mode_removes_without_notice(engine_factory, blocklist_store, directory):
    await _block(blocklist_store, "u1")
    directory.add_member(GUILD, "u1", display_name="Mallory")
    engine = engine_factory()

    assert await engine.evaluate_and_act(GUILD, "u1", directory) is True
    assert directory.notices == []
    assert await directory.get_member(GUILD, "u1") is None
    assert engine.stats.members_kicked == 1


@pytest.mark.asyncio
async def test_kick_gives_up_after_retries(engine_factory, blocklist_store, directory, sleeper):
    await _block(blocklist_store, "u1")
    directory.add_member(GUILD, "u1", display_name="Mallory")
    directory.fail_kicks[(GUILD, "u1")] = -1
    engine = engine_factory(make_settings(kick_retry_delay_ms=2000))

    assert await engine.evaluate_and_act(GUILD, "u1", directory) is False

    assert len(directory.kick_attempts) == 3
    assert sleeper.calls == [2.0, 2.0]
    assert len(directory.notices) == 1
    assert directory.notices[0][1] == "⚠️ Could not remove user Mallory.\nError: Missing Permissions"
    assert engine.stats.kicks_failed == 1


@pytest.mark.asyncio
async def test_kick_succeeds_on_retry(engine_factory, blocklist_store, directory):
    await _block(blocklist_store, "u1")
    directory.add_member(GUILD, "u1")
    directory.fail_kicks[(GUILD, "u1")] = 2

    assert await engine_factory().evaluate_and_act(GUILD, "u1", directory) is True
    assert len(directory.kick_attempts) == 3
    assert directory.notices == []


@pytest.mark.asyncio
async def test_notify_mode_sends_alert_only(engine_factory, blocklist_store, guild_settings_store, directory):
    await _block(blocklist_store, "u1", reason="raid")
    directory.add_member(GUILD, "u1", display_name="Mallory")
    await guild_settings_store.set_mode(GUILD, GuildMode.NOTIFY)

    assert await engine_factory().evaluate_and_act(GUILD, "u1", directory) is False
    assert directory.kick_attempts == []
    assert directory.notices == [(GUILD, "Blocklisted user detected: Mallory (u1).\nReason: raid")]


@pytest.mark.asyncio
async def test_both_mode_notifies_then_kicks(engine_factory, blocklist_store, guild_settings_store, directory):
    await _block(blocklist_store, "u1", reason="")
    directory.add_member(GUILD, "u1", display_name="Mallory")
    await guild_settings_store.set_mode(GUILD, GuildMode.BOTH)

    assert await engine_factory().evaluate_and_act(GUILD, "u1", directory) is True
    assert directory.notices == [(GUILD, "Removing blocklisted user Mallory (u1)...\nReason: Blocklisted account")]
    assert directory.kicked == [(GUILD, "u1", "Blocklisted: Blocklisted account")]


@pytest.mark.asyncio
async def test_notice_failure_does_not_block_kick(engine_factory, blocklist_store, guild_settings_store, directory):
    await _block(blocklist_store, "u1")
    directory.add_member(GUILD, "u1")
    directory.fail_notices = True
    await guild_settings_store.set_mode(GUILD, GuildMode.BOTH)

    assert await engine_factory().evaluate_and_act(GUILD, "u1", directory) is True


@pytest.mark.asyncio
async def test_verification_warns_when_member_remains(engine_factory, blocklist_store, directory, sleeper, caplog):
    await _block(blocklist_store, "u1")
    directory.add_member(GUILD, "u1")
    directory.sticky.add((GUILD, "u1"))
    engine = engine_factory(make_settings(kick_verify_delay_ms=1500))

    with caplog.at_level(logging.WARNING, logger="sentinel.decision"):
        assert await engine.evaluate_and_act(GUILD, "u1", directory) is True

    assert sleeper.calls == [1.5]
    assert "Kick verification failed" in caplog.text


@pytest.mark.asyncio
async def test_verification_can_be_disabled(engine_factory, blocklist_store, directory, sleeper):
    await _block(blocklist_store, "u1")
    directory.add_member(GUILD, "u1")
    engine = engine_factory(make_settings(verify_kick_result=False))

    assert await engine.evaluate_and_act(GUILD, "u1", directory) is True
    assert sleeper.calls == []
