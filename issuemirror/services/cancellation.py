"""Cooperative cancellation for long-running sync work.

A plain ``threading.Event`` is threaded through every fetch and sync call;
work units check it between pages and before each issue.
"""

import threading
from typing import Optional


class SyncCancelled(Exception):
    """Raised when a sync run is cancelled part-way through."""


def raise_if_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise SyncCancelled("Sync cancelled")
