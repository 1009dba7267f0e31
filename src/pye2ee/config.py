from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .constants import (
    DEFAULT_ONE_TIME_KEY_COUNT,
    MEGOLM_ROTATION_AGE_S,
    MEGOLM_ROTATION_MESSAGE_LIMIT,
)


@dataclass(slots=True)
class SessionConfig:
    rotation_message_limit: int = MEGOLM_ROTATION_MESSAGE_LIMIT
    rotation_age_s: float = MEGOLM_ROTATION_AGE_S

    one_time_key_count: int = DEFAULT_ONE_TIME_KEY_COUNT

    clock: Callable[[], float] = field(default=time.time)

    def now(self) -> float:
        return float(self.clock())
