"""
Driver contract for blob storage backends.

This module defines the abstract base classes and data types every backend
driver implements. A portable front-end depends only on these types, so a
driver is free to talk to its service however it likes as long as it honors
the contract below.

Escape hatches: each option object has an optional ``before_*`` hook that is
called with the backend-native request object right before the backend call,
and results expose the backend-native response through ``raw``. Drivers pass
these through without interpreting them.
"""

import inspect
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from .errors import ErrorCode

BeforeHook = Callable[[Any], "Awaitable[None] | None"]


async def run_hook(hook: BeforeHook | None, native: Any) -> None:
    """Invoke an escape-hatch hook, awaiting it when it is a coroutine."""
    if hook is None:
        return
    result = hook(native)
    if inspect.isawaitable(result):
        await result


@dataclass
class ReaderAttributes:
    """Attributes captured when a reader is opened."""

    content_type: str
    size: int
    mod_time: datetime | None


@dataclass
class Attributes:
    """Point-in-time snapshot of an object's attributes."""

    cache_control: str = ""
    content_disposition: str = ""
    content_encoding: str = ""
    content_language: str = ""
    content_type: str = ""
    size: int = 0
    create_time: datetime | None = None
    mod_time: datetime | None = None
    md5: bytes | None = None
    etag: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    raw: Any = None


@dataclass
class ListObject:
    """A single entry of a listing: either an object or a "directory" prefix."""

    key: str
    size: int = 0
    mod_time: datetime | None = None
    md5: bytes | None = None
    is_dir: bool = False
    raw: Any = None


@dataclass
class ListPage:
    """One page of a listing plus the token for the next one."""

    objects: list[ListObject] = field(default_factory=list)
    next_page_token: bytes | None = None

    @property
    def is_last(self) -> bool:
        return not self.next_page_token


@dataclass
class ReaderOptions:
    before_read: BeforeHook | None = None


@dataclass
class WriterOptions:
    """Options controlling how an object is written."""

    buffer_size: int = 0
    max_concurrency: int = 0
    cache_control: str = ""
    content_disposition: str = ""
    content_encoding: str = ""
    content_language: str = ""
    content_md5: bytes | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    before_write: BeforeHook | None = None


@dataclass
class ListOptions:
    prefix: str = ""
    delimiter: str = ""
    page_token: bytes | None = None
    page_size: int = 0
    before_list: BeforeHook | None = None


@dataclass
class SignedURLOptions:
    """Options for signed URLs; ``method`` is an HTTP verb."""

    method: str = "GET"
    expiry: timedelta = timedelta(hours=1)
    content_type: str = ""
    enforce_absent_content_type: bool = False
    before_sign: BeforeHook | None = None


@dataclass
class CopyOptions:
    before_copy: BeforeHook | None = None


class Reader(ABC):
    """Single-use stream over a byte range of one object."""

    @abstractmethod
    async def read(self, size: int = -1) -> bytes:
        """
        Read up to ``size`` bytes; a negative size reads to the end.

        Returns b"" once the range is exhausted.
        """

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying resources."""

    @property
    @abstractmethod
    def attributes(self) -> ReaderAttributes:
        """Attributes captured when the reader was opened."""

    @property
    def raw(self) -> Any:
        """Backend-native response, if the driver exposes one."""
        return None

    async def __aenter__(self) -> "Reader":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iter_chunks()

    async def _iter_chunks(self, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.read(chunk_size)
            if not chunk:
                return
            yield chunk


class Writer(ABC):
    """
    Single-use stream that creates or replaces one object.

    Writes must come from a single caller, one at a time. Errors from the
    backend are reported by ``close``, which must always be called.
    """

    @abstractmethod
    async def write(self, data: bytes) -> int:
        """Append ``data`` to the object being written."""

    @abstractmethod
    async def close(self) -> None:
        """Finish the write and raise any deferred error."""

    async def abort(self, error: BaseException) -> None:
        """Give up on the write; the object must not be committed."""
        await self.close()

    async def __aenter__(self) -> "Writer":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_val is not None:
            await self.abort(exc_val)
        else:
            await self.close()


class Bucket(ABC):
    """
    Abstract base class for bucket drivers.

    Keys are portable UTF-8 strings; drivers escape them as their backend
    requires and must return them unescaped from listings.
    """

    @abstractmethod
    async def close(self) -> None:
        """Release the driver's resources."""

    @abstractmethod
    async def copy(self, dst_key: str, src_key: str, opts: CopyOptions | None = None) -> None:
        """
        Copy ``src_key`` to ``dst_key``, returning once the copy is complete.

        Args:
            dst_key: Key of the object to create or replace
            src_key: Key of the existing object
            opts: Copy options
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete the object stored at ``key``."""

    @abstractmethod
    async def new_range_reader(
        self,
        key: str,
        offset: int = 0,
        length: int = -1,
        opts: ReaderOptions | None = None,
    ) -> Reader:
        """
        Open a reader over ``length`` bytes starting at ``offset``.

        Args:
            key: Object key
            offset: First byte to read
            length: Number of bytes to read; negative reads to the end,
                zero reads nothing but still resolves attributes
            opts: Reader options

        Returns:
            Reader positioned at ``offset``
        """

    @abstractmethod
    async def new_typed_writer(
        self,
        key: str,
        content_type: str,
        opts: WriterOptions | None = None,
    ) -> Writer:
        """
        Open a writer for ``key``.

        Args:
            key: Object key
            content_type: MIME type stored with the object
            opts: Writer options

        Returns:
            Writer; the object exists only after its close succeeds
        """

    @abstractmethod
    async def attributes(self, key: str) -> Attributes:
        """Return the attributes of the object at ``key``."""

    @abstractmethod
    async def list_paged(self, opts: ListOptions | None = None) -> ListPage:
        """
        Return one page of a listing.

        Args:
            opts: Prefix, delimiter, page token and page size

        Returns:
            ListPage whose ``next_page_token`` is empty at the end of the listing
        """

    @abstractmethod
    async def signed_url(self, key: str, opts: SignedURLOptions | None = None) -> str:
        """Return a time-limited URL granting ``opts.method`` access to ``key``."""

    @abstractmethod
    def classify_error(self, error: BaseException) -> ErrorCode:
        """Map a backend error onto a portable ErrorCode."""

    def error_as(self, error: BaseException) -> Any:
        """Return the backend-native error behind ``error``, if any."""
        return None

    async def __aenter__(self) -> "Bucket":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


__all__ = [
    "Attributes",
    "BeforeHook",
    "Bucket",
    "CopyOptions",
    "ListObject",
    "ListOptions",
    "ListPage",
    "Reader",
    "ReaderAttributes",
    "ReaderOptions",
    "SignedURLOptions",
    "Writer",
    "WriterOptions",
    "run_hook",
]
