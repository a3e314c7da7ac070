"""Millisecond clock helpers and small UDS utilities."""

from __future__ import annotations

import time

_U32_MASK = 0xFFFFFFFF
_I32_SIGN = 0x80000000


def millis():
    """Return the current wall-clock time in milliseconds, wrapped to 32 bits."""
    return (time.time_ns() // 1_000_000) & _U32_MASK


def time_after(a, b):
    """Return True if 32-bit timestamp ``a`` is after ``b``, tolerating wraparound."""
    return ((b - a) & _U32_MASK) >= _I32_SIGN


def security_access_level_is_reserved(security_level):
    """Return True if the security access level falls in a reserved range."""
    level = security_level & 0x3F
    return level == 0 or level >= 0x5E or level == 0x7F


class ManualClock:
    """A 32-bit millisecond clock that only moves when told to."""

    def __init__(self, start=0):
        self._now = start & _U32_MASK

    def __call__(self):
        return self._now

    def advance(self, ms):
        """Move the clock forward by ``ms`` milliseconds and return the new time."""
        if ms < 0:
            raise ValueError("a clock cannot move backwards")
        self._now = (self._now + ms) & _U32_MASK
        return self._now