from __future__ import annotations

# Payload algorithm discriminators (wire-visible, must never change).
ALGORITHM_OLM = "olm.v1"
ALGORITHM_MEGOLM = "megolm.v1"

# Outbound group sessions rotate after this many messages...
MEGOLM_ROTATION_MESSAGE_LIMIT = 100
# ...or once they are this old (7 days).
MEGOLM_ROTATION_AGE_S = 7 * 24 * 60 * 60

DEFAULT_ONE_TIME_KEY_COUNT = 50

PICKLE_KEY_LEN = 32

# PBKDF2-HMAC-SHA256 work factor for passphrase-derived pickle keys.
PASSPHRASE_KDF_ITERATIONS = 600_000
