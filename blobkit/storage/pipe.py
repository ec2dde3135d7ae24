"""
Unbuffered in-process byte pipe.

Connects a single producer (a writer's ``write`` calls) to a single consumer
task (the backend upload). Each ``write`` returns only once the consumer has
taken the bytes, so the producer can never run ahead of the upload.
"""

import asyncio
from collections.abc import AsyncIterator

_EOF = object()


class PipeClosedError(Exception):
    """Raised when writing to a pipe that can no longer accept data."""


class BytePipe:
    """Rendezvous channel of byte chunks between one writer and one reader."""

    def __init__(self) -> None:
        self._items: asyncio.Queue = asyncio.Queue()
        self._write_closed = False
        self._read_closed = False
        self._error: BaseException | None = None

    @property
    def error(self) -> BaseException | None:
        return self._error

    async def write(self, data: bytes) -> int:
        """Hand ``data`` to the reader and wait until it has been taken."""
        if self._read_closed:
            raise self._error or PipeClosedError("read side of pipe is closed")
        if self._write_closed:
            raise PipeClosedError("write to closed pipe")
        if not data:
            return 0

        accepted = asyncio.get_running_loop().create_future()
        self._items.put_nowait((bytes(data), accepted))
        try:
            await accepted
        except asyncio.CancelledError:
            # Withdraw the chunk unless the reader already took it.
            accepted.cancel()
            raise
        return len(data)

    def close_write(self, error: BaseException | None = None) -> None:
        """
        Close the write side.

        Without ``error`` the reader sees end of stream after the last chunk;
        with one, the reader's next read raises it.
        """
        if self._write_closed:
            return
        self._write_closed = True
        if self._read_closed:
            return
        if error is not None:
            self._drop_pending(error)
            self._items.put_nowait(error)
        else:
            self._items.put_nowait(_EOF)

    def close_read(self, error: BaseException) -> None:
        """
        Close the read side with ``error``.

        A write blocked waiting for the reader fails with ``error`` instead of
        hanging, and so does every later write.
        """
        if self._read_closed:
            return
        self._read_closed = True
        self._error = error
        self._drop_pending(error)

    def _drop_pending(self, error: BaseException) -> None:
        while not self._items.empty():
            item = self._items.get_nowait()
            if isinstance(item, tuple):
                _, accepted = item
                if not accepted.done():
                    accepted.set_exception(error)

    async def read(self) -> bytes:
        """Return the next chunk, or b"" at end of stream."""
        while not self._read_closed:
            item = await self._items.get()
            if item is _EOF:
                self._read_closed = True
                break
            if isinstance(item, BaseException):
                self._read_closed = True
                self._error = item
                raise item
            data, accepted = item
            if accepted.cancelled():
                continue
            if not accepted.done():
                accepted.set_result(None)
            return data
        return b""

    async def iter_blocks(self, block_size: int) -> AsyncIterator[bytes]:
        """Yield the stream regrouped into blocks of ``block_size`` bytes."""
        buffer = bytearray()
        while True:
            chunk = await self.read()
            if not chunk:
                break
            buffer.extend(chunk)
            while len(buffer) >= block_size:
                yield bytes(buffer[:block_size])
                del buffer[:block_size]
        if buffer:
            yield bytes(buffer)
