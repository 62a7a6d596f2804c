"""Double-buffered background reader."""

from __future__ import annotations

import logging
import threading
from types import SimpleNamespace
from typing import Any, Callable, Generic, Optional, TypeVar

from brokkr.errors import BrokkrError

log = logging.getLogger(__name__)

S = TypeVar("S")


class Lease(Generic[S]):
    """Exclusive access to one filled slot until released."""

    def __init__(self, owner: "TwoSlotPrefetcher[S]", index: int) -> None:
        self._owner: Optional[TwoSlotPrefetcher[S]] = owner
        self._index = index

    def get(self) -> S:
        """Return the leased slot."""
        if self._owner is None:
            raise BrokkrError("lease already released")
        return self._owner._slots[self._index]

    def release(self) -> None:
        """Hand the slot back to the reader; safe to call twice."""
        owner, self._owner = self._owner, None
        if owner is not None:
            owner._release(self._index)

    def __enter__(self) -> "Lease[S]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class TwoSlotPrefetcher(Generic[S]):
    """Fills two slots on a background thread while the caller consumes them.

    ``fill(slot, stop_event)`` stores data into ``slot`` and returns True, or
    returns False when there is nothing more; raising records an error.
    ``init()`` creates each of the two slots.
    """

    def __init__(
        self,
        fill: Callable[[S, threading.Event], bool],
        init: Optional[Callable[[], S]] = None,
    ) -> None:
        factory: Callable[[], Any] = init if init is not None else SimpleNamespace
        self._fill = fill
        self._slots = [factory(), factory()]
        self._cond = threading.Condition()
        self._filled = [False, False]
        self._done = False
        self._stopping = False
        self._write_idx = 0
        self._read_idx = 0
        self._error: Optional[BaseException] = None
        self._stop_event = threading.Event()
        self._reader = threading.Thread(target=self._reader_loop, name="brokkr-prefetch", daemon=True)
        self._reader.start()

    def request_stop(self) -> None:
        """Stop the reader and wait for it to exit."""
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
        self._stop_event.set()
        if self._reader is not threading.current_thread():
            self._reader.join()

    def next(self) -> Optional[Lease[S]]:
        """Wait for the next filled slot; None at the end, on stop or on error."""
        with self._cond:
            self._cond.wait_for(
                lambda: self._stopping
                or self._error is not None
                or self._filled[self._read_idx]
                or self._done
            )
            if self._stopping or self._error is not None or not self._filled[self._read_idx]:
                return None
            index = self._read_idx
            self._read_idx ^= 1
        return Lease(self, index)

    def check(self) -> None:
        """Raise the error the reader hit, if any."""
        with self._cond:
            error = self._error
        if error is not None:
            raise error

    def __enter__(self) -> "TwoSlotPrefetcher[S]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.request_stop()

    def _release(self, index: int) -> None:
        with self._cond:
            self._filled[index] = False
            self._cond.notify_all()

    def _finish(self) -> None:
        self._done = True
        self._cond.notify_all()

    def _reader_loop(self) -> None:
        try:
            while True:
                with self._cond:
                    self._cond.wait_for(lambda: self._stopping or not self._filled[self._write_idx])
                    if self._stopping or self._stop_event.is_set():
                        self._finish()
                        return
                    index = self._write_idx

                more = self._fill(self._slots[index], self._stop_event)

                with self._cond:
                    if self._stopping or self._stop_event.is_set() or not more:
                        self._finish()
                        return
                    self._filled[index] = True
                    self._write_idx ^= 1
                    self._cond.notify_all()
        except Exception as exc:
            log.debug("TwoSlotPrefetcher reader threw: %s", exc)
            with self._cond:
                self._error = exc
                self._finish()