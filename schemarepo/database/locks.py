"""Reader/writer lock guarding registry bookkeeping."""

import threading
from contextlib import contextmanager
from typing import Generator


class ReadWriteLock:
    """
    Many concurrent readers or one writer.

    Writers are preferred: once a writer is waiting, new readers block until
    it has finished, so a steady stream of reads cannot starve ``connect``
    or ``close``.

    Example:
        lock = ReadWriteLock()
        with lock.read():
            ...  # lookups
        with lock.write():
            ...  # structural changes
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Generator[None, None, None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Generator[None, None, None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()
