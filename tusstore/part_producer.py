"""Split a byte stream into temporary files of a fixed size."""

from __future__ import annotations

import os
import tempfile
import threading
from collections import deque
from typing import BinaryIO, Deque, IO, Iterator, Optional, Union

TEMP_FILE_PREFIX = "tusd-s3-tmp-"

_COPY_CHUNK = 64 * 1024


def clean_up_temp_file(file: IO[bytes]) -> None:
    """Close a temporary file and remove it from disk, ignoring failures."""
    try:
        file.close()
    except OSError:
        pass
    try:
        os.remove(file.name)
    except OSError:
        pass


class _PartChannel:
    """A bounded, closeable queue of part files shared between two threads."""

    def __init__(self, capacity: int) -> None:
        self._items: Deque[IO[bytes]] = deque()
        self._capacity = max(1, capacity)
        self._closed = False
        self._cond = threading.Condition()

    def send(self, item: IO[bytes], done: threading.Event) -> bool:
        """Queue an item; return False without queueing once done is set."""
        with self._cond:
            while (
                len(self._items) >= self._capacity
                and not self._closed
                and not done.is_set()
            ):
                self._cond.wait(0.05)
            if done.is_set() or self._closed:
                return False
            self._items.append(item)
            self._cond.notify_all()
            return True

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def _receive(self) -> Optional[IO[bytes]]:
        with self._cond:
            while not self._items and not self._closed:
                self._cond.wait()
            if self._items:
                item = self._items.popleft()
                self._cond.notify_all()
                return item
            return None

    def __iter__(self) -> Iterator[IO[bytes]]:
        while True:
            item = self._receive()
            if item is None:
                return
            yield item


class PartProducer:
    """Reads a stream and hands it out as temporary files through ``files``.

    ``produce`` is meant to run in its own thread; the consumer iterates over
    ``files`` and sets ``done`` to make the producer stop early. An error while
    reading ends production and is kept in ``error``.
    """

    def __init__(
        self,
        reader: BinaryIO,
        temporary_directory: Union[str, os.PathLike, None] = "",
        max_buffered: int = 0,
    ) -> None:
        self.reader = reader
        self.temporary_directory = temporary_directory or None
        self.files = _PartChannel(max_buffered)
        self.done = threading.Event()
        self.error: Optional[BaseException] = None

    def produce(self, part_size: int) -> None:
        """Emit parts of at most ``part_size`` bytes until the stream ends."""
        try:
            while True:
                file = self.next_part(part_size)
                if file is None:
                    return
                if not self.files.send(file, self.done):
                    clean_up_temp_file(file)
                    return
        except Exception as exc:
            self.error = exc
        finally:
            self.files.close()

    def next_part(self, size: int) -> Optional[IO[bytes]]:
        """Copy up to ``size`` bytes into a new temporary file.

        Returns the file rewound to its start, or None when the stream is exhausted.
        """
        file = tempfile.NamedTemporaryFile(
            mode="w+b",
            prefix=TEMP_FILE_PREFIX,
            dir=self.temporary_directory,
            delete=False,
        )
        try:
            written = 0
            while written < size:
                chunk = self.reader.read(min(size - written, _COPY_CHUNK))
                if not chunk:
                    break
                file.write(chunk)
                written += len(chunk)
        except BaseException:
            clean_up_temp_file(file)
            raise

        if written == 0:
            clean_up_temp_file(file)
            return None

        file.flush()
        file.seek(0)
        return file