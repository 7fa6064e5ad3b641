import threading

from ocisign.errors import CancelledError


class CancelToken:
    """Cancellation signal shared by the client and the entity walker."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise CancelledError("operation cancelled")
