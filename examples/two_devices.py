"""
Two local devices exchanging direct and group messages through pye2ee.

Demonstrates:
- device provisioning and a toy prekey server
- a first-contact direct message (prekey message) and its reply
- a group message with key shares, decrypted by every member
- file-backed session stores (pass --state to keep them between runs)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import tempfile
from pathlib import Path

from pye2ee import (
    ClaimedPrekey,
    ConversationKind,
    DeviceInfo,
    MessageCodec,
    PickleKeyProvider,
    provision_device,
)
from pye2ee.store import MultiFileSessionStore


class PrekeyServer:
    def __init__(self) -> None:
        self._keys: dict[str, list[ClaimedPrekey]] = {}

    def upload(self, device_id: str, one_time_keys: dict[str, str]) -> None:
        self._keys.setdefault(device_id, []).extend(
            ClaimedPrekey(key_id, key) for key_id, key in one_time_keys.items()
        )

    async def claim(self, user_id: str, device_id: str) -> ClaimedPrekey | None:
        pool = self._keys.get(device_id)
        return pool.pop(0) if pool else None


async def _device(root: Path, user_id: str, device_id: str, server: PrekeyServer) -> tuple[MessageCodec, DeviceInfo]:
    store = MultiFileSessionStore(root / device_id)
    keys = PickleKeyProvider.from_passphrase("demo passphrase", salt=device_id.encode())
    codec = MessageCodec(store, keys)
    if await codec.is_ready():
        # Reused state: the toy server forgot the old keys, hand it fresh ones.
        server.upload(device_id, await codec.replenish_one_time_keys())
    else:
        published = await provision_device(store, keys, device_id)
        server.upload(device_id, published.one_time_keys)
    return codec, DeviceInfo(user_id, device_id, await codec.device_identity_key())


async def main() -> None:
    ap = argparse.ArgumentParser(prog="two_devices.py")
    ap.add_argument("--state", default=None, help="folder for session files (default: temp dir)")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    args = ap.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    root = Path(args.state).expanduser() if args.state else Path(tempfile.mkdtemp(prefix="pye2ee-"))
    server = PrekeyServer()
    alice, alice_info = await _device(root, "@alice", "alice-phone", server)
    bob, bob_info = await _device(root, "@bob", "bob-phone", server)
    carol, carol_info = await _device(root, "@carol", "carol-laptop", server)

    # 1:1
    sent = await alice.encrypt("dm", "hi bob", ConversationKind.DIRECT, [bob_info], server.claim)
    print("alice -> bob:", sent.payload.to_dict())
    print("bob reads:", (await bob.decrypt("dm", sent.payload.to_dict())).placeholder)

    reply = await bob.encrypt("dm", "hey alice", ConversationKind.DIRECT, [alice_info], server.claim)
    print("alice reads:", (await alice.decrypt("dm", reply.payload.to_dict())).placeholder)

    # group
    members = [bob_info, carol_info]
    sent = await alice.encrypt("room", "hello room", ConversationKind.GROUP, members, server.claim)
    for codec, info in ((bob, bob_info), (carol, carol_info)):
        for share in sent.session_shares or []:
            if share.recipient_device_id == info.device_id:
                await codec.process_session_share(
                    "room", alice_info.device_id, alice_info.identity_key, share.encrypted_session_key
                )
        result = await codec.decrypt("room", sent.payload.to_dict())
        print(f"{info.device_id} reads:", result.placeholder)

    print("session files in", root)


if __name__ == "__main__":
    asyncio.run(main())
