"""Wall-clock helpers for duration reporting."""

import time


def elapsed_ms(start: float) -> int:
    """Milliseconds since a ``time.monotonic()`` reading."""
    return int(round((time.monotonic() - start) * 1000))
