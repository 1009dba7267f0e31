"""
Pairwise (Olm-style) double ratchet session.

Session setup is a triple Diffie-Hellman between the initiator's identity and
ephemeral base key and the responder's identity and one-time key. Messages are
AES-256-CBC encrypted with keys from a symmetric chain; every reply from the
peer carries a new ratchet key that triggers a Diffie-Hellman ratchet step.

Until the initiator has decrypted something from the responder, every outgoing
message is wrapped in a prekey message so the responder can build the session
even if earlier messages were lost.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from ..crypto.aes import aes_decrypt_cbc_pkcs7, aes_encrypt_cbc_pkcs7
from ..crypto.curve import Curve25519Provider, DefaultCurve25519Provider, KeyPair
from ..crypto.hkdf import constant_time_equal, hmac_sha256, sha256
from ..util.bytes import b64decode_unpadded, b64encode_unpadded
from .exceptions import MacError, OlmSessionError
from .kdf import kdf_chain, kdf_message_keys, kdf_ratchet, kdf_root_secret
from .messages import MAC_LEN, PreKeyMessage, RatchetMessage
from .pickle import seal, unseal

MESSAGE_TYPE_PREKEY = 0
MESSAGE_TYPE_NORMAL = 1

_PICKLE_KIND = "session"
_MAX_SKIP = 2000
_MAX_SKIPPED_KEYS = 50
_MAX_RECEIVER_CHAINS = 5


@dataclass(frozen=True, slots=True)
class OlmMessage:
    """An encrypted pairwise message: `type` 0 = prekey, 1 = normal."""

    type: int
    body: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "body": self.body}


@dataclass(slots=True)
class _ChainKey:
    index: int
    key: bytes


@dataclass(slots=True)
class _MessageKey:
    index: int
    cipher_key: bytes
    mac_key: bytes
    iv: bytes


@dataclass(slots=True)
class _ReceiverChain:
    ratchet_key: bytes
    chain_key: _ChainKey
    message_keys: list[_MessageKey] = field(default_factory=list)


@dataclass(slots=True)
class _SenderChain:
    ratchet_key: KeyPair
    chain_key: _ChainKey


@dataclass(slots=True)
class _PendingPreKey:
    base_key: bytes
    one_time_key: bytes


def compute_session_id(initiator_identity: bytes, base_key: bytes, one_time_key: bytes) -> str:
    return b64encode_unpadded(sha256(initiator_identity + base_key + one_time_key))


def _compute_mac(mac_key: bytes, *, sender_identity: bytes, receiver_identity: bytes, body: bytes) -> bytes:
    return hmac_sha256(mac_key, sender_identity + receiver_identity + body)[:MAC_LEN]


class Session:
    def __init__(
        self,
        *,
        session_id: str,
        local_identity: bytes,
        remote_identity: bytes,
        root_key: bytes,
        sender_chain: _SenderChain,
        receiver_chains: list[_ReceiverChain] | None = None,
        previous_counter: int = 0,
        pending_prekey: _PendingPreKey | None = None,
        local_one_time_key: bytes | None = None,
        received_message: bool = False,
        ratchet_index: int = 0,
        curve: Curve25519Provider | None = None,
    ) -> None:
        self._session_id = session_id
        self._local_identity = local_identity
        self._remote_identity = remote_identity
        self._root_key = root_key
        self._sender_chain = sender_chain
        self._receiver_chains = receiver_chains or []
        self._previous_counter = previous_counter
        self._pending_prekey = pending_prekey
        self._local_one_time_key = local_one_time_key
        self._received_message = received_message
        self._ratchet_index = ratchet_index
        self._curve = curve or DefaultCurve25519Provider()

    # --- construction ---

    @classmethod
    def create_outbound(
        cls,
        *,
        our_identity: KeyPair,
        their_identity_key: bytes,
        their_one_time_key: bytes,
        curve: Curve25519Provider | None = None,
    ) -> Session:
        c = curve or DefaultCurve25519Provider()
        base = c.generate_keypair()

        dh1 = c.shared_key(our_identity.private, their_one_time_key)
        dh2 = c.shared_key(base.private, their_identity_key)
        dh3 = c.shared_key(base.private, their_one_time_key)
        root_key, receiver_chain_key = kdf_root_secret(dh1 + dh2 + dh3)

        # The responder's first sending ratchet key is its one-time key.
        receiver = _ReceiverChain(
            ratchet_key=their_one_time_key, chain_key=_ChainKey(0, receiver_chain_key)
        )

        sending_ratchet = c.generate_keypair()
        new_root, sending_chain_key = kdf_ratchet(
            root_key, c.shared_key(sending_ratchet.private, their_one_time_key)
        )

        return cls(
            session_id=compute_session_id(our_identity.public, base.public, their_one_time_key),
            local_identity=our_identity.public,
            remote_identity=their_identity_key,
            root_key=new_root,
            sender_chain=_SenderChain(sending_ratchet, _ChainKey(0, sending_chain_key)),
            receiver_chains=[receiver],
            pending_prekey=_PendingPreKey(base_key=base.public, one_time_key=their_one_time_key),
            curve=c,
        )

    @classmethod
    def create_inbound(
        cls,
        *,
        our_identity: KeyPair,
        our_one_time_key: KeyPair,
        message: PreKeyMessage,
        curve: Curve25519Provider | None = None,
    ) -> Session:
        """
        Build the responder side of a session from a prekey message.

        The embedded message is not decrypted here; call `decrypt` with the
        original message afterwards.
        """

        c = curve or DefaultCurve25519Provider()
        dh1 = c.shared_key(our_one_time_key.private, message.identity_key)
        dh2 = c.shared_key(our_identity.private, message.base_key)
        dh3 = c.shared_key(our_one_time_key.private, message.base_key)
        root_key, sender_chain_key = kdf_root_secret(dh1 + dh2 + dh3)

        return cls(
            session_id=compute_session_id(
                message.identity_key, message.base_key, message.one_time_key
            ),
            local_identity=our_identity.public,
            remote_identity=message.identity_key,
            root_key=root_key,
            sender_chain=_SenderChain(
                KeyPair(public=our_one_time_key.public, private=our_one_time_key.private),
                _ChainKey(0, sender_chain_key),
            ),
            local_one_time_key=our_one_time_key.public,
            curve=c,
        )

    # --- properties ---

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def ratchet_index(self) -> int:
        """Number of messages this session has encrypted or decrypted."""

        return self._ratchet_index

    @property
    def has_received_message(self) -> bool:
        return self._received_message

    @property
    def local_one_time_key(self) -> bytes | None:
        """The responder's one-time public key this session was built from."""

        return self._local_one_time_key

    def matches_inbound(self, body: str) -> bool:
        """True when a prekey message body belongs to this session."""

        try:
            pk = PreKeyMessage.decode(b64decode_unpadded(body))
        except (OlmSessionError, ValueError):
            return False
        return compute_session_id(pk.identity_key, pk.base_key, pk.one_time_key) == self._session_id

    # --- encryption ---

    def encrypt(self, plaintext: str) -> OlmMessage:
        chain = self._sender_chain.chain_key
        counter = chain.index
        next_ck, seed = kdf_chain(chain.key)
        cipher_key, mac_key, iv = kdf_message_keys(seed)

        ct = aes_encrypt_cbc_pkcs7(plaintext.encode("utf-8"), key=cipher_key, iv=iv)
        unsigned = RatchetMessage(
            ratchet_key=self._sender_chain.ratchet_key.public,
            counter=counter,
            previous_counter=self._previous_counter,
            ciphertext=ct,
        )
        body = unsigned.authenticated_part()
        mac = _compute_mac(
            mac_key,
            sender_identity=self._local_identity,
            receiver_identity=self._remote_identity,
            body=body,
        )
        whisper = body + mac

        self._sender_chain.chain_key = _ChainKey(counter + 1, next_ck)
        self._ratchet_index += 1

        if self._pending_prekey is not None:
            pk = PreKeyMessage(
                one_time_key=self._pending_prekey.one_time_key,
                base_key=self._pending_prekey.base_key,
                identity_key=self._local_identity,
                message=whisper,
            )
            return OlmMessage(MESSAGE_TYPE_PREKEY, b64encode_unpadded(pk.encode()))
        return OlmMessage(MESSAGE_TYPE_NORMAL, b64encode_unpadded(whisper))

    def decrypt(self, message: OlmMessage) -> str:
        """
        Decrypt `message`, advancing the ratchet.

        On failure the session is left exactly as it was before the call.
        """

        try:
            raw = b64decode_unpadded(message.body)
        except ValueError as e:
            raise OlmSessionError("message body is not valid base64") from e

        if message.type == MESSAGE_TYPE_PREKEY:
            pk = PreKeyMessage.decode(raw)
            if compute_session_id(pk.identity_key, pk.base_key, pk.one_time_key) != self._session_id:
                raise OlmSessionError("prekey message does not belong to this session")
            raw = pk.message
        elif message.type != MESSAGE_TYPE_NORMAL:
            raise OlmSessionError(f"unsupported message type: {message.type!r}")

        snapshot = self._snapshot()
        try:
            plaintext = self._decrypt_ratchet_message(RatchetMessage.decode(raw))
        except Exception:
            self._restore(snapshot)
            raise

        self._pending_prekey = None
        self._received_message = True
        self._ratchet_index += 1
        return plaintext

    def _decrypt_ratchet_message(self, msg: RatchetMessage) -> str:
        chain = next((c for c in self._receiver_chains if c.ratchet_key == msg.ratchet_key), None)
        if chain is None:
            chain = self._ratchet_step(msg.ratchet_key)

        counter = msg.counter
        if chain.chain_key.index > counter:
            for i, mk in enumerate(chain.message_keys):
                if mk.index == counter:
                    self._verify_mac(mk.mac_key, msg)
                    del chain.message_keys[i]
                    return self._open(msg.ciphertext, mk.cipher_key, mk.iv)
            raise OlmSessionError("message key for old counter not found")

        if counter - chain.chain_key.index > _MAX_SKIP:
            raise OlmSessionError("excessive message key skip")

        while chain.chain_key.index < counter:
            next_ck, seed = kdf_chain(chain.chain_key.key)
            cipher_key, mac_key, iv = kdf_message_keys(seed)
            chain.message_keys.append(_MessageKey(chain.chain_key.index, cipher_key, mac_key, iv))
            chain.chain_key = _ChainKey(chain.chain_key.index + 1, next_ck)
            if len(chain.message_keys) > _MAX_SKIPPED_KEYS:
                del chain.message_keys[0]

        next_ck, seed = kdf_chain(chain.chain_key.key)
        cipher_key, mac_key, iv = kdf_message_keys(seed)
        self._verify_mac(mac_key, msg)
        chain.chain_key = _ChainKey(chain.chain_key.index + 1, next_ck)
        return self._open(msg.ciphertext, cipher_key, iv)

    def _open(self, ciphertext: bytes, key: bytes, iv: bytes) -> str:
        try:
            return aes_decrypt_cbc_pkcs7(ciphertext, key=key, iv=iv).decode("utf-8")
        except ValueError as e:
            raise OlmSessionError(f"could not decrypt message body: {e}") from e

    def _verify_mac(self, mac_key: bytes, msg: RatchetMessage) -> None:
        expected = _compute_mac(
            mac_key,
            sender_identity=self._remote_identity,
            receiver_identity=self._local_identity,
            body=msg.authenticated_part(),
        )
        if not constant_time_equal(expected, msg.mac):
            raise MacError("pairwise message MAC mismatch")

    def _ratchet_step(self, remote_ratchet_key: bytes) -> _ReceiverChain:
        # previous_counter describes *our* sending chain before the step.
        prev = max(self._sender_chain.chain_key.index - 1, 0)

        dh1 = self._curve.shared_key(self._sender_chain.ratchet_key.private, remote_ratchet_key)
        new_root, recv_chain_key = kdf_ratchet(self._root_key, dh1)
        receiver = _ReceiverChain(ratchet_key=remote_ratchet_key, chain_key=_ChainKey(0, recv_chain_key))
        self._receiver_chains.append(receiver)

        new_ratchet = self._curve.generate_keypair()
        dh2 = self._curve.shared_key(new_ratchet.private, remote_ratchet_key)
        new_root2, send_chain_key = kdf_ratchet(new_root, dh2)

        self._previous_counter = prev
        self._root_key = new_root2
        self._sender_chain = _SenderChain(new_ratchet, _ChainKey(0, send_chain_key))

        if len(self._receiver_chains) > _MAX_RECEIVER_CHAINS:
            del self._receiver_chains[0]
        return receiver

    def _snapshot(self) -> tuple[Any, ...]:
        return (
            self._root_key,
            copy.deepcopy(self._sender_chain),
            copy.deepcopy(self._receiver_chains),
            self._previous_counter,
        )

    def _restore(self, snapshot: tuple[Any, ...]) -> None:
        self._root_key, self._sender_chain, self._receiver_chains, self._previous_counter = snapshot

    # --- persistence ---

    def to_state(self) -> dict[str, Any]:
        return {
            "session_id": self._session_id,
            "local_identity": self._local_identity,
            "remote_identity": self._remote_identity,
            "root_key": self._root_key,
            "sender_chain": {
                "public": self._sender_chain.ratchet_key.public,
                "private": self._sender_chain.ratchet_key.private,
                "index": self._sender_chain.chain_key.index,
                "key": self._sender_chain.chain_key.key,
            },
            "receiver_chains": [
                {
                    "ratchet_key": c.ratchet_key,
                    "index": c.chain_key.index,
                    "key": c.chain_key.key,
                    "message_keys": [
                        [mk.index, mk.cipher_key, mk.mac_key, mk.iv] for mk in c.message_keys
                    ],
                }
                for c in self._receiver_chains
            ],
            "previous_counter": self._previous_counter,
            "pending_prekey": (
                None
                if self._pending_prekey is None
                else [self._pending_prekey.base_key, self._pending_prekey.one_time_key]
            ),
            "local_one_time_key": self._local_one_time_key,
            "received_message": self._received_message,
            "ratchet_index": self._ratchet_index,
        }

    @classmethod
    def from_state(cls, state: dict[str, Any], *, curve: Curve25519Provider | None = None) -> Session:
        sc = state["sender_chain"]
        pending = state.get("pending_prekey")
        return cls(
            session_id=str(state["session_id"]),
            local_identity=bytes(state["local_identity"]),
            remote_identity=bytes(state["remote_identity"]),
            root_key=bytes(state["root_key"]),
            sender_chain=_SenderChain(
                KeyPair(public=bytes(sc["public"]), private=bytes(sc["private"])),
                _ChainKey(int(sc["index"]), bytes(sc["key"])),
            ),
            receiver_chains=[
                _ReceiverChain(
                    ratchet_key=bytes(c["ratchet_key"]),
                    chain_key=_ChainKey(int(c["index"]), bytes(c["key"])),
                    message_keys=[
                        _MessageKey(int(i), bytes(ck), bytes(mk), bytes(iv))
                        for i, ck, mk, iv in c["message_keys"]
                    ],
                )
                for c in state.get("receiver_chains") or []
            ],
            previous_counter=int(state.get("previous_counter", 0)),
            pending_prekey=_PendingPreKey(bytes(pending[0]), bytes(pending[1])) if pending else None,
            local_one_time_key=(
                bytes(state["local_one_time_key"]) if state.get("local_one_time_key") else None
            ),
            received_message=bool(state.get("received_message", False)),
            ratchet_index=int(state.get("ratchet_index", 0)),
            curve=curve,
        )

    def pickle(self, key: bytes) -> str:
        return seal(_PICKLE_KIND, self.to_state(), key)

    @classmethod
    def from_pickle(cls, pickle: str, key: bytes, *, curve: Curve25519Provider | None = None) -> Session:
        return cls.from_state(unseal(_PICKLE_KIND, pickle, key), curve=curve)
