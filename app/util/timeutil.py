# app/util/timeutil.py
from __future__ import annotations

import time


def now_ts() -> int:
    """Unix timestamp in whole seconds."""
    return int(time.time())
