from __future__ import annotations
import threading


class CancelToken:
    """
    Cooperative cancellation for one in-flight stream.
    Adapters poll `cancelled` between frames and close their response when set.
    """
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
