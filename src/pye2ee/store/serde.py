from __future__ import annotations

from dataclasses import asdict
from typing import Any

from .base import GroupSessionRecord, SealedSession, StoredAccount


def account_from_dict(d: dict[str, Any]) -> StoredAccount:
    return StoredAccount(
        device_id=str(d["device_id"]),
        pickle=str(d["pickle"]),
        created_at=float(d.get("created_at", 0.0)),
    )


def sealed_session_from_dict(d: dict[str, Any]) -> SealedSession:
    return SealedSession(
        pickle=str(d["pickle"]),
        session_id=d.get("session_id"),
        ratchet_index=int(d.get("ratchet_index", 0)),
        identity_key=d.get("identity_key"),
        updated_at=float(d.get("updated_at", 0.0)),
    )


def group_record_from_dict(d: dict[str, Any]) -> GroupSessionRecord:
    outbound = d.get("outbound")
    created_at = d.get("outbound_created_at")
    return GroupSessionRecord(
        conversation_id=str(d["conversation_id"]),
        outbound=sealed_session_from_dict(outbound) if outbound else None,
        inbound_by_id={
            str(sid): sealed_session_from_dict(s) for sid, s in (d.get("inbound_by_id") or {}).items()
        },
        message_count=int(d.get("message_count", 0)),
        outbound_created_at=float(created_at) if created_at is not None else None,
    )


def to_dict(obj: StoredAccount | SealedSession | GroupSessionRecord) -> dict[str, Any]:
    return asdict(obj)
