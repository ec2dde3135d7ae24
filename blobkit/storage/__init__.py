"""
Blob storage driver layer.

This module provides the backend-neutral driver contract for object storage
together with the Azure Blob Storage driver that implements it.
"""

from .azure_blob import (
    DEFAULT_PAGE_SIZE,
    AzureBlobBucket,
    AzureBlobReader,
    AzureBlobWriter,
    open_bucket,
    resolve_size,
)
from .copy_poller import CopyStatus, wait_for_copy
from .driver import (
    Attributes,
    Bucket,
    CopyOptions,
    ListObject,
    ListOptions,
    ListPage,
    Reader,
    ReaderAttributes,
    ReaderOptions,
    SignedURLOptions,
    Writer,
    WriterOptions,
)
from .errors import (
    ErrorCode,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    UnimplementedError,
)
from .escape import escape_key, unescape_key

__all__ = [
    # Driver contract
    "Bucket",
    "Reader",
    "Writer",
    # Azure implementation
    "AzureBlobBucket",
    "AzureBlobReader",
    "AzureBlobWriter",
    "open_bucket",
    "resolve_size",
    "DEFAULT_PAGE_SIZE",
    # Data models and options
    "Attributes",
    "ReaderAttributes",
    "ListObject",
    "ListPage",
    "ListOptions",
    "ReaderOptions",
    "WriterOptions",
    "SignedURLOptions",
    "CopyOptions",
    "CopyStatus",
    "wait_for_copy",
    # Errors
    "ErrorCode",
    "StorageError",
    "NotFoundError",
    "PermissionDeniedError",
    "UnimplementedError",
    "InvalidArgumentError",
    # Escaping
    "escape_key",
    "unescape_key",
]
