from datetime import datetime, timedelta
from typing import Optional


def is_online(last_seen: Optional[datetime], now: datetime, threshold: timedelta) -> bool:
    """True while the last heartbeat is younger than `threshold`.

    A missing `last_seen` only happens with malformed rows and reads as offline.
    """
    if last_seen is None:
        return False
    return now - last_seen < threshold
