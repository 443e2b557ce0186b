"""Cryptographically strong randomness for session codes, spies and words.

``secrets.randbelow`` draws from the OS CSPRNG and rejection-samples, so
indices are uniform with no modulo bias.
"""

import secrets
from typing import List, Sequence, TypeVar

T = TypeVar('T')

SESSION_CODE_BYTES = 3


def secure_random_index(exclusive_upper_bound: int) -> int:
    if exclusive_upper_bound <= 0:
        raise ValueError('exclusive_upper_bound must be positive')
    return secrets.randbelow(exclusive_upper_bound)


def secure_shuffle(sequence: Sequence[T]) -> List[T]:
    """Return a Fisher-Yates shuffled copy of ``sequence``."""
    shuffled = list(sequence)
    for i in range(len(shuffled) - 1, 0, -1):
        j = secure_random_index(i + 1)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def generate_session_code() -> str:
    # 3 bytes -> 6 uppercase hex digits
    return secrets.token_hex(SESSION_CODE_BYTES).upper()
