from __future__ import annotations


class Liveness:
    """Cancellation token shared by everything a session owns.

    Continuations check ``alive`` after each await and drop their result once
    the owning session has been torn down.
    """

    __slots__ = ("_alive",)

    def __init__(self) -> None:
        self._alive = True

    @property
    def alive(self) -> bool:
        return self._alive

    def cancel(self) -> None:
        self._alive = False
