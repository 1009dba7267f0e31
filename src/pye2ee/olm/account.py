from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..crypto.curve import Curve25519Provider, DefaultCurve25519Provider, KeyPair
from ..util.bytes import b64decode_unpadded, b64encode_unpadded
from .exceptions import OlmSessionError, UnknownOneTimeKey
from .messages import KEY_LEN, PreKeyMessage
from .pickle import seal, unseal
from .session import MESSAGE_TYPE_PREKEY, OlmMessage, Session

_PICKLE_KIND = "account"
MAX_ONE_TIME_KEYS = 100


@dataclass(frozen=True, slots=True)
class IdentityKeys:
    curve25519: str
    ed25519: str


@dataclass(slots=True)
class _OneTimeKey:
    key_id: int
    key_pair: KeyPair
    published: bool = False


def _key_id_str(key_id: int) -> str:
    return b64encode_unpadded(key_id.to_bytes(4, "big"))


def decode_public_key(key: str) -> bytes:
    try:
        raw = b64decode_unpadded(key)
    except ValueError as e:
        raise OlmSessionError("public key is not valid base64") from e
    if len(raw) != KEY_LEN:
        raise OlmSessionError("public key must be 32 bytes")
    return raw


class Account:
    """
    Long-term device identity: a Curve25519 identity key, an Ed25519 signing
    key, a pool of one-time prekeys and an optional fallback key.
    """

    def __init__(
        self,
        *,
        identity: KeyPair,
        signing: KeyPair,
        one_time_keys: list[_OneTimeKey] | None = None,
        fallback_key: _OneTimeKey | None = None,
        previous_fallback_key: _OneTimeKey | None = None,
        next_key_id: int = 1,
        curve: Curve25519Provider | None = None,
    ) -> None:
        self._identity = identity
        self._signing = signing
        self._one_time_keys = one_time_keys or []
        self._fallback_key = fallback_key
        self._previous_fallback_key = previous_fallback_key
        self._next_key_id = next_key_id
        self._curve = curve or DefaultCurve25519Provider()

    @classmethod
    def create(cls, *, curve: Curve25519Provider | None = None) -> Account:
        c = curve or DefaultCurve25519Provider()
        return cls(identity=c.generate_keypair(), signing=c.generate_signing_keypair(), curve=c)

    # --- keys ---

    @property
    def identity_keys(self) -> IdentityKeys:
        return IdentityKeys(
            curve25519=b64encode_unpadded(self._identity.public),
            ed25519=b64encode_unpadded(self._signing.public),
        )

    def sign(self, message: bytes) -> str:
        return b64encode_unpadded(self._curve.sign(self._signing.private, message))

    def _new_key(self) -> _OneTimeKey:
        key = _OneTimeKey(key_id=self._next_key_id, key_pair=self._curve.generate_keypair())
        self._next_key_id += 1
        return key

    def generate_one_time_keys(self, count: int) -> None:
        if count < 0:
            raise ValueError("count must be >= 0")
        for _ in range(count):
            self._one_time_keys.append(self._new_key())
        # Oldest keys are dropped first when the pool overflows.
        if len(self._one_time_keys) > MAX_ONE_TIME_KEYS:
            del self._one_time_keys[: len(self._one_time_keys) - MAX_ONE_TIME_KEYS]

    @property
    def one_time_keys(self) -> dict[str, str]:
        """Unpublished one-time public keys, keyed by key id."""

        return {
            _key_id_str(k.key_id): b64encode_unpadded(k.key_pair.public)
            for k in self._one_time_keys
            if not k.published
        }

    @property
    def stored_one_time_key_count(self) -> int:
        return len(self._one_time_keys)

    def generate_fallback_key(self) -> None:
        self._previous_fallback_key = self._fallback_key
        self._fallback_key = self._new_key()

    @property
    def fallback_key(self) -> dict[str, str]:
        k = self._fallback_key
        if k is None or k.published:
            return {}
        return {_key_id_str(k.key_id): b64encode_unpadded(k.key_pair.public)}

    def mark_keys_as_published(self) -> None:
        for k in self._one_time_keys:
            k.published = True
        if self._fallback_key is not None:
            self._fallback_key.published = True

    def _find_key(self, public_key: bytes) -> _OneTimeKey | None:
        for k in self._one_time_keys:
            if k.key_pair.public == public_key:
                return k
        for k in (self._fallback_key, self._previous_fallback_key):
            if k is not None and k.key_pair.public == public_key:
                return k
        return None

    # --- sessions ---

    def create_outbound_session(self, identity_key: str, one_time_key: str) -> Session:
        return Session.create_outbound(
            our_identity=self._identity,
            their_identity_key=decode_public_key(identity_key),
            their_one_time_key=decode_public_key(one_time_key),
            curve=self._curve,
        )

    def create_inbound_session(self, identity_key: str, body: str) -> tuple[Session, str]:
        """
        Build a session from a prekey message and decrypt it.

        `identity_key` is the identity key the caller believes sent the
        message; a prekey message claiming a different identity is rejected.
        """

        try:
            pk = PreKeyMessage.decode(b64decode_unpadded(body))
        except ValueError as e:
            raise OlmSessionError("prekey message body is not valid base64") from e
        if pk.identity_key != decode_public_key(identity_key):
            raise OlmSessionError("prekey message identity key does not match sender")

        otk = self._find_key(pk.one_time_key)
        if otk is None:
            raise UnknownOneTimeKey("prekey message references an unknown one-time key")

        session = Session.create_inbound(
            our_identity=self._identity,
            our_one_time_key=otk.key_pair,
            message=pk,
            curve=self._curve,
        )
        plaintext = session.decrypt(OlmMessage(MESSAGE_TYPE_PREKEY, body))
        return session, plaintext

    def remove_one_time_keys(self, session: Session) -> None:
        """
        Forget the one-time key `session` was built from. Fallback keys stay.
        """

        public = session.local_one_time_key
        if public is None:
            raise UnknownOneTimeKey("session was not created from a one-time key")
        for i, k in enumerate(self._one_time_keys):
            if k.key_pair.public == public:
                del self._one_time_keys[i]
                return
        if self._find_key(public) is None:
            raise UnknownOneTimeKey("one-time key already removed")

    # --- persistence ---

    def to_state(self) -> dict[str, Any]:
        def _key(k: _OneTimeKey | None) -> dict[str, Any] | None:
            if k is None:
                return None
            return {
                "key_id": k.key_id,
                "public": k.key_pair.public,
                "private": k.key_pair.private,
                "published": k.published,
            }

        return {
            "identity": {"public": self._identity.public, "private": self._identity.private},
            "signing": {"public": self._signing.public, "private": self._signing.private},
            "one_time_keys": [_key(k) for k in self._one_time_keys],
            "fallback_key": _key(self._fallback_key),
            "previous_fallback_key": _key(self._previous_fallback_key),
            "next_key_id": self._next_key_id,
        }

    @classmethod
    def from_state(cls, state: dict[str, Any], *, curve: Curve25519Provider | None = None) -> Account:
        def _key(d: dict[str, Any] | None) -> _OneTimeKey | None:
            if not d:
                return None
            return _OneTimeKey(
                key_id=int(d["key_id"]),
                key_pair=KeyPair(public=bytes(d["public"]), private=bytes(d["private"])),
                published=bool(d.get("published", False)),
            )

        return cls(
            identity=KeyPair(
                public=bytes(state["identity"]["public"]),
                private=bytes(state["identity"]["private"]),
            ),
            signing=KeyPair(
                public=bytes(state["signing"]["public"]),
                private=bytes(state["signing"]["private"]),
            ),
            one_time_keys=[k for k in (_key(d) for d in state.get("one_time_keys") or []) if k],
            fallback_key=_key(state.get("fallback_key")),
            previous_fallback_key=_key(state.get("previous_fallback_key")),
            next_key_id=int(state.get("next_key_id", 1)),
            curve=curve,
        )

    def pickle(self, key: bytes) -> str:
        return seal(_PICKLE_KIND, self.to_state(), key)

    @classmethod
    def from_pickle(cls, pickle: str, key: bytes, *, curve: Curve25519Provider | None = None) -> Account:
        return cls.from_state(unseal(_PICKLE_KIND, pickle, key), curve=curve)
