"""Cooperative cancellation shared between a stream consumer and its producer."""


class CancellationToken:
    """A flag that is set once and polled at loop boundaries.

    Cancelling never interrupts an in-flight read, the stream loop checks the
    token after each chunk and stops on its own.
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"
