"""Signal-driven shutdown notification."""

from __future__ import annotations

import logging
import signal
import threading

logger = logging.getLogger("reportdb.shutdown")


def install_shutdown_handler(event: threading.Event | None = None) -> threading.Event:
    """Set ``event`` when SIGINT or SIGTERM arrives; return the event.

    Must be called from the main thread.
    """
    if event is None:
        event = threading.Event()

    def _handle(signum, frame):
        if not event.is_set():
            event.set()
            logger.info("global shutdown signal received: %s", signal.Signals(signum).name)

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handle)
    return event