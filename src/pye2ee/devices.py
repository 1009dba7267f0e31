"""
Device provisioning: create the local account and produce the public key
material the key server needs (identity keys, one-time keys, fallback key).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .cipher import CipherLibrary, OlmCipherLibrary
from .config import SessionConfig
from .pairwise import PairwiseSessionManager
from .pickle_key import PickleKeyProvider
from .store.base import SessionStore, StoredAccount

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PublishedKeys:
    device_id: str
    identity_key: str  # Curve25519
    signing_key: str  # Ed25519
    one_time_keys: dict[str, str]
    fallback_key: dict[str, str]


async def provision_device(
    store: SessionStore,
    pickle_keys: PickleKeyProvider,
    device_id: str,
    *,
    config: SessionConfig | None = None,
    cipher: CipherLibrary | None = None,
) -> PublishedKeys:
    """
    Create and persist a new sealed account for `device_id`.

    Any previous account in `store` is replaced. The returned keys are already
    marked as published, so upload them before dropping the result.
    """

    config = config or SessionConfig()
    cipher = cipher or OlmCipherLibrary()

    account = cipher.create_account()
    account.generate_one_time_keys(config.one_time_key_count)
    account.generate_fallback_key()

    identity = account.identity_keys
    one_time_keys = account.one_time_keys
    fallback_key = account.fallback_key
    account.mark_keys_as_published()

    await store.put_account(
        StoredAccount(
            device_id=device_id,
            pickle=account.pickle(pickle_keys.get()),
            created_at=config.now(),
        )
    )
    logger.info("provisioned device %s with %d one-time keys", device_id, len(one_time_keys))

    return PublishedKeys(
        device_id=device_id,
        identity_key=identity.curve25519,
        signing_key=identity.ed25519,
        one_time_keys=one_time_keys,
        fallback_key=fallback_key,
    )


async def replenish_one_time_keys(
    store: SessionStore,
    pickle_keys: PickleKeyProvider,
    count: int,
    *,
    cipher: CipherLibrary | None = None,
) -> dict[str, str]:
    manager = PairwiseSessionManager(store, pickle_keys, cipher=cipher)
    return await manager.replenish_one_time_keys(count)
