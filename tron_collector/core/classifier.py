"""Hash classification into (Parity, Magnitude)."""

import re
from functools import lru_cache

from tron_collector.models.blockchain import Classification, Magnitude, Parity

_DIGIT = re.compile(r"\d")


def last_digit(block_hash: str) -> int:
    """Return the last decimal digit present in the hash, or 0 if there is none."""
    if not block_hash:
        return 0
    digits = _DIGIT.findall(block_hash)
    if not digits:
        return 0
    return int(digits[-1])


@lru_cache(maxsize=4096)
def classify(block_hash: str) -> Classification:
    """
    Classify a block hash.

    The digit is the last decimal digit of the hash. Parity is the digit
    modulo 2; magnitude is BIG for digits 5-9 and SMALL for 0-4.
    """
    digit = last_digit(block_hash)
    return Classification(
        digit_value=digit,
        parity=Parity.EVEN if digit % 2 == 0 else Parity.ODD,
        magnitude=Magnitude.BIG if digit >= 5 else Magnitude.SMALL,
    )
