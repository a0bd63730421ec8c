"""
Common utilities.
"""

import hashlib
import time
from functools import cache

__all__ = [
    "KEY_CHARS",
    "base_n_hash",
    "now_ms",
]

KEY_CHARS = "0123456789abcdefghijklmnopqrstuvwxyz"
"""
Characters used to encode keys which end up in file names.
"""


def now_ms() -> int:
    """
    Current time as epoch milliseconds, the resolution used by stored
    timestamps.
    """
    return int(time.time() * 1000)


def base_n_hash(data: bytes, chars: str = KEY_CHARS) -> str:
    """
    Hash data using SHAKE-128 and encode as a base-N string, where N is
    len(chars).
    """
    assert len(chars) > 1

    # get hash value as a large integer
    digest = hashlib.shake_128(data).digest(16)
    int_digest = int.from_bytes(digest, "big")

    # consume hash value and generate result
    result = ""
    while int_digest:
        int_digest, index = divmod(int_digest, len(chars))
        result += chars[index]

    # pad result to max length
    return result.ljust(_get_max_len(128, len(chars)), chars[0])


@cache
def _get_max_len(bit_count: int, char_count: int) -> int:
    """
    Get max length of the resulting hash for the given # bits and # characters
    used to represent it.
    """
    max_digest = (1 << bit_count) - 1
    max_len = 0
    while max_digest:
        max_digest = max_digest // char_count
        max_len += 1
    return max_len
