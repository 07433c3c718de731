from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Optional, Union


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


class GuildMode(str, Enum):
    OFF = "off"
    NOTIFY = "notify"
    KICK = "kick"
    BOTH = "both"

    @property
    def notifies(self) -> bool:
        return self in (GuildMode.NOTIFY, GuildMode.BOTH)

    @property
    def kicks(self) -> bool:
        return self in (GuildMode.KICK, GuildMode.BOTH)

    @classmethod
    def parse(cls, raw: Optional[str], default: Optional["GuildMode"] = None) -> "GuildMode":
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            if default is None:
                raise
            return default


@dataclass(frozen=True)
class BlockEntry:
    """Locally cached denylist row. Only the sync engine writes these."""

    identity_id: str
    reason: str
    operator_id: Optional[str] = None
    source_id: Optional[str] = None
    disabled: bool = False
    updated_at: str = field(default_factory=now_iso)

    @classmethod
    def from_remote(cls, row: dict[str, Any]) -> Optional["BlockEntry"]:
        uid = row.get("user_id")
        if uid is None or str(uid).strip() == "":
            return None
        return cls(
            identity_id=str(uid).strip(),
            reason=str(row.get("reason") or ""),
            operator_id=_opt_str(row.get("operator_id")),
            source_id=_opt_str(row.get("source_id")),
            disabled=_opt_bool(row.get("disabled")),
            updated_at=str(row.get("updated_at") or now_iso()),
        )


@dataclass(frozen=True)
class ExemptEntry:
    """Remote allowlist row; overrides any BlockEntry for the same identity."""

    identity_id: str
    reason: Optional[str] = None
    operator_id: Optional[str] = None
    created_at: str = field(default_factory=now_iso)

    @classmethod
    def from_remote(cls, row: dict[str, Any]) -> Optional["ExemptEntry"]:
        uid = row.get("user_id")
        if uid is None or str(uid).strip() == "":
            return None
        return cls(
            identity_id=str(uid).strip(),
            reason=_opt_str(row.get("reason")),
            operator_id=_opt_str(row.get("operator_id")),
            created_at=str(row.get("created_at") or now_iso()),
        )


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _opt_bool(value: Any) -> bool:
    # JSON rows may carry "false"/"0" strings as well as real booleans.
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "on"}
    return bool(value)


# -------------------- Outbound requests (tagged union) --------------------


@dataclass(frozen=True)
class AddRequest:
    request_id: str
    applicant_id: str
    target_user_id: str
    reason: str
    timestamp: int
    guild_id: Optional[str] = None

    kind: ClassVar[str] = "ADD"
    endpoint: ClassVar[str] = "/applications"

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "request_id": self.request_id,
            "type": self.kind,
            "applicant_id": self.applicant_id,
            "target_user_id": self.target_user_id,
            "reason": self.reason,
            "timestamp": self.timestamp,
        }
        if self.guild_id is not None:
            payload["guild_id"] = self.guild_id
        return payload


@dataclass(frozen=True)
class RemoveRequest(AddRequest):
    kind: ClassVar[str] = "REMOVE"


@dataclass(frozen=True)
class CancelRequest:
    request_id: str
    target_request_id: str
    applicant_id: str
    timestamp: int

    kind: ClassVar[str] = "CANCEL"
    endpoint: ClassVar[str] = "/applications/cancel"

    def to_payload(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "target_request_id": self.target_request_id,
            "applicant_id": self.applicant_id,
            "timestamp": self.timestamp,
        }


OutboundRequest = Union[AddRequest, RemoveRequest, CancelRequest]

REQUEST_KINDS: dict[str, type] = {
    "ADD": AddRequest,
    "REMOVE": RemoveRequest,
    "CANCEL": CancelRequest,
}


def new_request_id() -> str:
    return str(uuid.uuid4())


def _required(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None or str(value).strip() == "":
        raise ValueError(f"payload is missing required field {key!r}")
    return str(value)


def parse_request(kind: str, payload: dict[str, Any]) -> OutboundRequest:
    """Validate a raw payload into its typed request.

    A missing ``request_id`` is assigned here, so the returned request always
    carries its own id.
    """
    kind = str(kind).upper()
    if kind not in REQUEST_KINDS:
        raise ValueError(f"unknown request kind {kind!r}")

    request_id = str(payload.get("request_id") or payload.get("requestId") or new_request_id())
    timestamp = int(payload.get("timestamp") or now_ms())

    if kind == "CANCEL":
        return CancelRequest(
            request_id=request_id,
            target_request_id=_required(payload, "target_request_id"),
            applicant_id=_required(payload, "applicant_id"),
            timestamp=timestamp,
        )

    cls = AddRequest if kind == "ADD" else RemoveRequest
    guild_id = payload.get("guild_id")
    return cls(
        request_id=request_id,
        applicant_id=_required(payload, "applicant_id"),
        target_user_id=_required(payload, "target_user_id"),
        reason=_required(payload, "reason"),
        timestamp=timestamp,
        guild_id=str(guild_id) if guild_id is not None else None,
    )


@dataclass(frozen=True)
class QueuedRequest:
    request_id: str
    kind: str
    payload: dict[str, Any]
    created_at: str
    retry_count: int = 0

    def to_request(self) -> OutboundRequest:
        return parse_request(self.kind, self.payload)


# -------------------- Results --------------------


@dataclass
class DrainReport:
    fetched: int = 0
    delivered: int = 0
    deferred: int = 0
    rejected: int = 0
    dead_lettered: int = 0
    skipped: bool = False


@dataclass(frozen=True)
class ScanResult:
    handled: int
    total: int
    error: Optional[str] = None


@dataclass
class ScanSummary:
    processed_groups: int = 0
    handled: int = 0
    failed_instances: int = 0
