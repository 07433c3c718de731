from __future__ import annotations

import pytest

from sentinel.blocklist.sync_engine import SyncEngine
from sentinel.services import blocklist_store as blocklist_store_module
from sentinel.services.remote_client import RemoteUnavailableError


@pytest.fixture
def sync_engine(remote, blocklist_store, meta_store) -> SyncEngine:
    return SyncEngine(remote=remote, blocklist=blocklist_store, meta=meta_store, instance_id="inst-1")


@pytest.mark.asyncio
async def test_full_replace_from_empty_cache(sync_engine, remote, blocklist_store, meta_store):
    remote.sync_responses.append(
        {
            "strategy": "full_replace",
            "newRevision": "r1",
            "data": {"blacklist": [{"user_id": "u1", "reason": "spam"}], "whitelist": []},
        }
    )

    assert await sync_engine.sync() is True

    entry = await blocklist_store.get_active_block("u1")
    assert entry is not None
    assert entry.reason == "spam"
    assert await meta_store.get_revision() == "r1"
    assert remote.sync_calls == [("", "inst-1")]


@pytest.mark.asyncio
async def test_up_to_date_changes_nothing(sync_engine, remote, meta_store):
    await meta_store.set_revision("r7")
    remote.sync_responses.append({"strategy": "up-to-date"})

    assert await sync_engine.sync() is False
    assert await meta_store.get_revision() == "r7"
    assert remote.sync_calls == [("r7", "inst-1")]


@pytest.mark.asyncio
async def test_incremental_applies_all_four_lists(sync_engine, remote, blocklist_store, meta_store):
    remote.sync_responses.append(
        {
            "strategy": "full_replace",
            "newRevision": "r1",
            "data": {
                "blacklist": [{"user_id": "old", "reason": "x"}],
                "whitelist": [{"user_id": "friend"}],
            },
        }
    )
    remote.sync_responses.append(
        {
            "strategy": "incremental",
            "newRevision": "r2",
            "data": {
                "upserts": [{"user_id": "new", "reason": "raid"}],
                "deletes": ["old"],
                "whitelist_upserts": [{"user_id": "vip"}],
                "whitelist_deletes": ["friend"],
            },
        }
    )
    await sync_engine.sync()

    assert await sync_engine.sync() is True
    assert await blocklist_store.active_block_ids() == {"new"}
    assert await blocklist_store.exempt_ids() == {"vip"}
    assert await meta_store.get_revision() == "r2"


@pytest.mark.asyncio
async def test_incremental_replay_is_idempotent(sync_engine, remote, blocklist_store):
    delta = {
        "strategy": "incremental",
        "newRevision": "r2",
        "data": {"upserts": [{"user_id": "u9", "reason": "r"}], "deletes": ["ghost"]},
    }
    remote.sync_responses.extend([dict(delta), dict(delta)])

    await sync_engine.sync()
    first = await blocklist_store.list_blocks()
    await sync_engine.sync()
    second = await blocklist_store.list_blocks()

    assert [e.identity_id for e in first] == ["u9"]
    assert [(e.identity_id, e.reason, e.disabled) for e in second] == [("u9", "r", False)]


@pytest.mark.asyncio
async def test_failed_pull_keeps_revision(sync_engine, remote, meta_store):
    await meta_store.set_revision("r3")
    remote.sync_responses.append(RemoteUnavailableError("connection refused"))

    assert await sync_engine.sync() is False
    assert await meta_store.get_revision() == "r3"
    assert sync_engine.stats.syncs_failed == 1


@pytest.mark.asyncio
async def test_unknown_strategy_is_a_failure(sync_engine, remote, meta_store):
    remote.sync_responses.append({"strategy": "teleport", "newRevision": "r9", "data": {}})

    assert await sync_engine.sync() is False
    assert await meta_store.get_revision() == ""


@pytest.mark.asyncio
async def test_missing_new_revision_is_a_failure(sync_engine, remote, blocklist_store):
    remote.sync_responses.append({"strategy": "full_replace", "data": {"blacklist": [{"user_id": "u1"}]}})

    assert await sync_engine.sync() is False
    assert await blocklist_store.count_blocks() == 0


@pytest.mark.asyncio
async def test_legacy_array_full_replace_keeps_exempts(sync_engine, remote, blocklist_store):
    remote.sync_responses.append(
        {
            "strategy": "incremental",
            "newRevision": "r1",
            "data": {"whitelist_upserts": [{"user_id": "friend"}]},
        }
    )
    remote.sync_responses.append(
        {"strategy": "full_replace", "newRevision": "r2", "data": [{"user_id": "u1", "reason": "spam"}]}
    )

    await sync_engine.sync()
    assert await sync_engine.sync() is True

    assert await blocklist_store.exempt_ids() == {"friend"}
    assert await blocklist_store.active_block_ids() == {"u1"}


@pytest.mark.asyncio
async def test_full_replace_without_whitelist_key_keeps_exempts(sync_engine, remote, blocklist_store):
    remote.sync_responses.append(
        {"strategy": "incremental", "newRevision": "r1", "data": {"whitelist_upserts": [{"user_id": "friend"}]}}
    )
    remote.sync_responses.append(
        {"strategy": "full_replace", "newRevision": "r2", "data": {"blacklist": []}}
    )
    remote.sync_responses.append(
        {"strategy": "full_replace", "newRevision": "r3", "data": {"blacklist": [], "whitelist": []}}
    )

    await sync_engine.sync()
    await sync_engine.sync()
    assert await blocklist_store.exempt_ids() == {"friend"}

    await sync_engine.sync()
    assert await blocklist_store.exempt_ids() == set()


@pytest.mark.asyncio
async def test_exempt_only_or_disabled_changes_report_nothing_new(sync_engine, remote):
    remote.sync_responses.append(
        {"strategy": "incremental", "newRevision": "r1", "data": {"whitelist_upserts": [{"user_id": "a"}]}}
    )
    remote.sync_responses.append(
        {
            "strategy": "incremental",
            "newRevision": "r2",
            "data": {"upserts": [{"user_id": "b", "reason": "x", "disabled": True}]},
        }
    )

    assert await sync_engine.sync() is False
    assert await sync_engine.sync() is False


@pytest.mark.asyncio
async def test_malformed_rows_are_skipped(sync_engine, remote, blocklist_store):
    remote.sync_responses.append(
        {
            "strategy": "full_replace",
            "newRevision": "r1",
            "data": {"blacklist": [{"reason": "no id"}, "garbage", {"user_id": 42, "reason": "ok"}]},
        }
    )

    assert await sync_engine.sync() is True
    assert await blocklist_store.active_block_ids() == {"42"}


async def _seed(sync_engine, remote) -> None:
    remote.sync_responses.append(
        {
            "strategy": "full_replace",
            "newRevision": "r1",
            "data": {"blacklist": [{"user_id": "old", "reason": "x"}], "whitelist": [{"user_id": "f"}]},
        }
    )
    assert await sync_engine.sync() is True


def _fail_exempt_writes(monkeypatch) -> None:
    def explode(entry):
        raise RuntimeError("disk full")

    monkeypatch.setattr(blocklist_store_module, "_exempt_params", explode)


@pytest.mark.asyncio
async def test_full_replace_failure_mid_apply_rolls_back(sync_engine, remote, blocklist_store, meta_store, monkeypatch):
    await _seed(sync_engine, remote)
    _fail_exempt_writes(monkeypatch)
    remote.sync_responses.append(
        {
            "strategy": "full_replace",
            "newRevision": "r2",
            "data": {"blacklist": [{"user_id": "new", "reason": "y"}], "whitelist": [{"user_id": "g"}]},
        }
    )

    assert await sync_engine.sync() is False

    assert await blocklist_store.active_block_ids() == {"old"}
    assert await blocklist_store.exempt_ids() == {"f"}
    assert await meta_store.get_revision() == "r1"


@pytest.mark.asyncio
async def test_incremental_failure_mid_apply_rolls_back(sync_engine, remote, blocklist_store, meta_store, monkeypatch):
    await _seed(sync_engine, remote)
    _fail_exempt_writes(monkeypatch)
    remote.sync_responses.append(
        {
            "strategy": "incremental",
            "newRevision": "r2",
            "data": {
                "upserts": [{"user_id": "new", "reason": "y"}],
                "deletes": ["old"],
                "whitelist_upserts": [{"user_id": "g"}],
            },
        }
    )

    assert await sync_engine.sync() is False

    assert await blocklist_store.active_block_ids() == {"old"}
    assert await blocklist_store.exempt_ids() == {"f"}
    assert await meta_store.get_revision() == "r1"
