from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Recoverable failure kinds reported in `EncryptResult` / `DecryptResult`."""

    PREKEY_UNAVAILABLE = "prekey_unavailable"
    NO_SESSION_FOUND = "no_session_found"
    REPLAYED_MESSAGE = "replayed_message"
    MALFORMED_PAYLOAD = "malformed_payload"
    DECRYPTION_FAILED = "decryption_failed"


class Pye2eeError(Exception):
    """Base error for the pye2ee library."""


class SessionError(Pye2eeError):
    """A recoverable session-layer failure; `kind` says which one."""

    kind: ErrorKind = ErrorKind.DECRYPTION_FAILED


class PrekeyUnavailable(SessionError):
    """The prekey claim service had no one-time key for the device."""

    kind = ErrorKind.PREKEY_UNAVAILABLE

    def __init__(self, *, user_id: str, device_id: str) -> None:
        super().__init__(f"no prekey available for {user_id}/{device_id}")
        self.user_id = user_id
        self.device_id = device_id


class NoSessionFound(SessionError):
    """Key material needed to decrypt is missing."""

    kind = ErrorKind.NO_SESSION_FOUND


class ReplayedMessage(SessionError):
    """A group message index was already consumed."""

    kind = ErrorKind.REPLAYED_MESSAGE

    def __init__(self, *, session_id: str, message_index: int, high_water_mark: int) -> None:
        super().__init__(
            f"message index {message_index} of session {session_id} already consumed "
            f"(next expected index {high_water_mark})"
        )
        self.session_id = session_id
        self.message_index = message_index
        self.high_water_mark = high_water_mark


class MalformedPayload(SessionError):
    """Unknown algorithm or missing/invalid field."""

    kind = ErrorKind.MALFORMED_PAYLOAD


class DecryptionFailed(SessionError):
    """The cipher library failed to decrypt."""

    kind = ErrorKind.DECRYPTION_FAILED


class NotReadyError(Pye2eeError):
    """No local account exists yet. Provision the device first."""


class StaleSessionError(Pye2eeError):
    """A write would replace a stored session with a less advanced copy of itself."""


class StoreError(Pye2eeError):
    """Session store backend failure."""
