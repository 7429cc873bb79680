from __future__ import annotations

import time


def ms_to_date(ms: int) -> str:
    """Local asctime of a ms timestamp with the millisecond remainder appended.

    >>> ms_to_date(0)  # doctest: +SKIP
    'Thu Jan  1 00:00:00 1970 + 0 ms'
    """
    seconds, millis = divmod(int(ms), 1000)
    return f"{time.asctime(time.localtime(seconds))} + {millis} ms"
