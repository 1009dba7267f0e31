"""
The cipher library contract the session managers are written against.

`OlmCipherLibrary` is the default implementation backed by `pye2ee.olm`;
any object with the same methods (for instance a wrapper around a native
Olm/Megolm binding) can be injected instead.
"""

from __future__ import annotations

from typing import Protocol

from .crypto.curve import Curve25519Provider, DefaultCurve25519Provider
from .olm import Account, GroupSession, InboundGroupSession, Session


class CipherLibrary(Protocol):
    def create_account(self) -> Account: ...

    def account_from_pickle(self, pickle: str, key: bytes) -> Account: ...

    def session_from_pickle(self, pickle: str, key: bytes) -> Session: ...

    def create_group_session(self) -> GroupSession: ...

    def group_session_from_pickle(self, pickle: str, key: bytes) -> GroupSession: ...

    def create_inbound_group_session(self, session_key: str) -> InboundGroupSession: ...

    def inbound_group_session_from_pickle(self, pickle: str, key: bytes) -> InboundGroupSession: ...


class OlmCipherLibrary:
    def __init__(self, *, curve: Curve25519Provider | None = None) -> None:
        self._curve = curve or DefaultCurve25519Provider()

    def create_account(self) -> Account:
        return Account.create(curve=self._curve)

    def account_from_pickle(self, pickle: str, key: bytes) -> Account:
        return Account.from_pickle(pickle, key, curve=self._curve)

    def session_from_pickle(self, pickle: str, key: bytes) -> Session:
        return Session.from_pickle(pickle, key, curve=self._curve)

    def create_group_session(self) -> GroupSession:
        return GroupSession.create(curve=self._curve)

    def group_session_from_pickle(self, pickle: str, key: bytes) -> GroupSession:
        return GroupSession.from_pickle(pickle, key, curve=self._curve)

    def create_inbound_group_session(self, session_key: str) -> InboundGroupSession:
        return InboundGroupSession.from_session_key(session_key, curve=self._curve)

    def inbound_group_session_from_pickle(self, pickle: str, key: bytes) -> InboundGroupSession:
        return InboundGroupSession.from_pickle(pickle, key, curve=self._curve)
