"""
Time-sortable identifiers (UUID version 7).
"""

import os
import threading
import time
import uuid

RAND_BITS = 74
_RAND_B_BITS = 62

_lock = threading.Lock()
_last_ms = -1
_last_rand = 0


def _now_ms() -> int:
    return (time.time_ns() // 1_000_000) & ((1 << 48) - 1)


def _random_bits() -> int:
    return int.from_bytes(os.urandom(10), "big") >> (80 - RAND_BITS)


def compose(timestamp_ms: int, rand: int) -> uuid.UUID:
    """48-bit millisecond timestamp, version, 12 bits of rand, variant, 62 bits of rand."""
    rand_a = rand >> _RAND_B_BITS
    rand_b = rand & ((1 << _RAND_B_BITS) - 1)
    value = (timestamp_ms << 80) | (0x7 << 76) | (rand_a << 64) | (0b10 << 62) | rand_b
    return uuid.UUID(int=value)


def uuid7() -> uuid.UUID:
    """New UUIDv7. Ids minted in the same millisecond increase monotonically.

    Within one millisecond the 74 random bits act as a counter; when it runs
    out the id borrows the next millisecond.
    """
    global _last_ms, _last_rand
    timestamp_ms = _now_ms()
    with _lock:
        rand = _random_bits()
        if timestamp_ms <= _last_ms:
            timestamp_ms = _last_ms
            rand = _last_rand + 1
            if rand >> RAND_BITS:
                timestamp_ms += 1
                rand = 0
        _last_ms, _last_rand = timestamp_ms, rand
    return compose(timestamp_ms, rand)


def new_id() -> str:
    return str(uuid7())
