from __future__ import annotations

import secrets
import time

BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
SUFFIX_LENGTH = 9


def random_base36(length: int = SUFFIX_LENGTH) -> str:
    if length < 1:
        raise ValueError("base36 suffix length must be positive")
    return "".join(secrets.choice(BASE36_ALPHABET) for _ in range(length))


def new_task_id() -> str:
    # Epoch millis plus a random suffix: collision-improbable, not unique.
    ts_ms = int(time.time() * 1000)
    return f"{ts_ms}{random_base36()}"

