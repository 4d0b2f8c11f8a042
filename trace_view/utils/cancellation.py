import threading


class CancellationToken:
    """Simple cooperative cancellation token."""

    def __init__(self) -> None:
        self._ev = threading.Event()

    def cancel(self) -> None:
        """Signal cancellation."""
        self._ev.set()

    def is_set(self) -> bool:
        """Return True if cancellation requested."""
        return self._ev.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True if cancelled meanwhile."""
        return self._ev.wait(timeout)

    def raise_if_cancelled(self) -> None:
        """Raise StreamCancelled if token has been cancelled."""
        if self._ev.is_set():
            from .errors import StreamCancelled

            raise StreamCancelled("cancelled")
