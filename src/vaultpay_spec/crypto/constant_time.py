"""Constant-time byte comparison."""

from __future__ import annotations

import hmac


def constant_time_eq(a: bytes, b: bytes) -> bool:
    """Compare identities without exiting early on the first mismatch.

    Lengths are not secret: strings of different length compare unequal.
    """
    return hmac.compare_digest(bytes(a), bytes(b))
