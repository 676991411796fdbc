"""Millisecond wall clock used to drive the KCP state machine."""

import time


def clock64() -> int:
    """Current time in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


def clock() -> int:
    """Current time in milliseconds, truncated to 32 bits."""
    return clock64() & 0xFFFFFFFF