from __future__ import annotations

import base64


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(data: str) -> bytes:
    return base64.b64decode(data.encode("ascii"))


def b64encode_unpadded(data: bytes) -> str:
    """Standard-alphabet base64 without `=` padding (the Olm/Matrix key encoding)."""

    return base64.b64encode(data).rstrip(b"=").decode("ascii")


def b64decode_unpadded(data: str) -> bytes:
    pad = "=" * (-len(data) % 4)
    return base64.b64decode((data + pad).encode("ascii"), validate=True)
