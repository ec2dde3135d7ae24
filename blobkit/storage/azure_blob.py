"""
Azure Blob Storage driver.

This module implements the Bucket contract on top of Azure Storage block
blobs, using the asyncio flavour of the azure-storage-blob SDK.

Escaping: portable keys may be any UTF-8 string, Azure's are not.
    - Blob keys: ASCII 0-31, 127 and "\\" are escaped to "__0x<hex>__", as is
      the "/" of every "../" and a trailing "/" on a full key.
    - Metadata keys: Azure only accepts C# identifiers, so everything outside
      [A-Za-z0-9_] is hex-escaped, and so is a leading digit.
    - Metadata values: URL encoded.

Native types exposed through the escape hatches:
    - AzureBlobBucket.client: ContainerClient
    - AzureBlobBucket.error_as: HttpResponseError
    - ListObject.raw: BlobProperties for objects, BlobPrefix for "directories"
    - ListOptions.before_list: keyword arguments of walk_blobs / list_blobs
    - AzureBlobReader.raw: StorageStreamDownloader (BlobProperties for empty reads)
    - ReaderOptions.before_read: keyword arguments of download_blob
    - Attributes.raw: BlobProperties
    - CopyOptions.before_copy: keyword arguments of start_copy_from_url
    - WriterOptions.before_write: keyword arguments of upload_blob
    - SignedURLOptions.before_sign: BlobSasPermissions

SAS URLs for PUT are only usable when the request carries an
"x-ms-blob-type: BlockBlob" header.
"""

import asyncio
import socket
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from typing import Any

import structlog
from azure.core.exceptions import AzureError, HttpResponseError
from azure.storage.blob import (
    BlobProperties,
    BlobSasPermissions,
    BlobType,
    ContentSettings,
    StorageErrorCode,
    generate_blob_sas,
)
from azure.storage.blob.aio import BlobClient, BlobServiceClient, ContainerClient

from .copy_poller import wait_for_copy
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
    run_hook,
)
from .errors import (
    ErrorCode,
    InvalidArgumentError,
    StorageError,
    UnimplementedError,
    storage_error_for,
)
from .escape import (
    escape_key,
    escape_metadata_key,
    escape_metadata_value,
    unescape_key,
    unescape_metadata_key,
    unescape_metadata_value,
)
from .pipe import BytePipe, PipeClosedError

logger = structlog.get_logger(__name__)

DEFAULT_MAX_DOWNLOAD_RETRIES = 3  # Azure retries downloads by default; keep it bounded
DEFAULT_PAGE_SIZE = 1000  # Azure's own default is 5000
DEFAULT_UPLOAD_BUFFERS = 5  # upload parallelism
DEFAULT_UPLOAD_BLOCK_SIZE = 8 * 1024 * 1024

_HOST_LOOKUP_FAILURES = (
    "no such host",
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
)

Translate = Callable[[BaseException, str], StorageError]


def resolve_size(content_length: int | None, content_range: str | None) -> int:
    """
    Work out the full object size of a (possibly partial) download.

    The content length only covers the returned range; the total after "/" in
    a Content-Range such as "bytes 10-14/27" is the size of the whole blob.
    """
    size = content_length or 0
    if content_range:
        parts = content_range.split("/")
        if len(parts) == 2:
            try:
                size = int(parts[1])
            except ValueError:
                pass  # "*" or garbage: keep the content length
    return size


def _iter_error_chain(error: BaseException) -> Iterator[BaseException]:
    seen = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if isinstance(current, StorageError) and current.original is not None:
            current = current.original
        elif isinstance(current, AzureError) and current.inner_exception is not None:
            current = current.inner_exception
        else:
            current = current.__cause__


def _is_host_lookup_failure(error: BaseException) -> bool:
    for err in _iter_error_chain(error):
        if isinstance(err, socket.gaierror):
            return True
        text = str(err).lower()
        if any(marker in text for marker in _HOST_LOOKUP_FAILURES):
            return True
    return False


class AzureBlobReader(Reader):
    """Reader over a range of one blob."""

    def __init__(
        self,
        downloader: Any,
        attributes: ReaderAttributes,
        raw: Any,
        translate: Translate,
        key: str,
    ):
        self._downloader = downloader
        self._attributes = attributes
        self._raw = raw
        self._translate = translate
        self._key = key
        self._closed = False

    @property
    def attributes(self) -> ReaderAttributes:
        return self._attributes

    @property
    def raw(self) -> Any:
        return self._raw

    async def read(self, size: int = -1) -> bytes:
        if self._closed:
            raise ValueError("read from closed reader")
        if self._downloader is None or size == 0:
            return b""
        try:
            return await self._downloader.read(size if size > 0 else -1)
        except AzureError as e:
            raise self._translate(e, f"read {self._key!r}") from e

    async def close(self) -> None:
        self._closed = True
        self._downloader = None


class AzureBlobWriter(Writer):
    """
    Writer streaming into a block blob.

    The first write starts one background upload task fed through an
    unbuffered pipe; each write waits until the upload has taken its bytes.
    Closing without any write uploads an empty blob.
    """

    def __init__(
        self,
        client: BlobClient,
        upload_kwargs: dict[str, Any],
        block_size: int,
        translate: Translate,
        key: str,
    ):
        self._client = client
        self._upload_kwargs = upload_kwargs
        self._block_size = block_size
        self._translate = translate
        self._key = key

        self._pipe: BytePipe | None = None
        self._task: asyncio.Task | None = None
        self._closed = False
        self._error: BaseException | None = None

    async def write(self, data: bytes) -> int:
        if self._closed:
            error = self._error or (self._pipe.error if self._pipe is not None else None)
            raise error or PipeClosedError("write to closed writer")
        if not data:
            return 0
        if self._pipe is None:
            self._pipe = BytePipe()
            self._open(self._pipe.iter_blocks(self._block_size))
        return await self._pipe.write(data)

    def _open(self, body: Any) -> None:
        self._task = asyncio.create_task(self._upload(body))

    async def _upload(self, body: Any) -> None:
        try:
            await self._client.upload_blob(body, **self._upload_kwargs)
        except asyncio.CancelledError:
            self._fail_pipe(StorageError(f"upload of {self._key!r} cancelled", code=ErrorCode.CANCELED))
            raise
        except AzureError as e:
            error = self._translate(e, f"upload {self._key!r}")
            logger.warning("Blob upload failed", key=self._key, error=str(e))
            self._fail_pipe(error)
            raise error from e
        except Exception as e:
            logger.warning("Blob upload failed", key=self._key, error=str(e))
            self._fail_pipe(e)
            raise

    def _fail_pipe(self, error: BaseException) -> None:
        if self._pipe is not None:
            self._pipe.close_read(error)

    async def close(self) -> None:
        """
        Finish the upload and raise any error it hit.

        If nothing was written, an empty blob is created at the key.
        """
        if self._closed:
            if self._error is not None:
                raise self._error
            return
        self._closed = True

        if self._pipe is None:
            self._open(b"")
        else:
            self._pipe.close_write()
        await self._wait()

    async def abort(self, error: BaseException) -> None:
        """Stop the upload without committing the blob."""
        if self._closed:
            return
        self._closed = True
        if self._pipe is None:
            return
        self._pipe.close_write(error)
        try:
            await self._wait()
        except Exception as e:
            logger.debug("Aborted blob upload", key=self._key, error=str(e))

    async def _wait(self) -> None:
        assert self._task is not None
        try:
            await self._task
        except asyncio.CancelledError:
            self._task.cancel()
            raise
        except Exception as e:
            self._error = e
            raise


class AzureBlobBucket(Bucket):
    """
    Azure Storage container exposed through the Bucket contract.

    One container client serves every operation on the bucket; it is safe to
    use concurrently across keys.
    """

    def __init__(
        self,
        service_client: BlobServiceClient,
        container_client: ContainerClient,
        close_service_client: bool = False,
        credential: Any = None,
    ):
        self._service_client = service_client
        self._client = container_client
        self._close_service_client = close_service_client
        self._credential = credential

    @property
    def client(self) -> ContainerClient:
        return self._client

    @property
    def container_name(self) -> str:
        return self._client.container_name

    async def close(self) -> None:
        await self._client.close()
        if self._close_service_client:
            await self._service_client.close()
            if self._credential is not None:
                await self._credential.close()
        logger.debug("Closed Azure bucket", container=self.container_name)

    def _blob(self, key: str) -> BlobClient:
        return self._client.get_blob_client(escape_key(key, False))

    def _storage_error(self, error: BaseException, operation: str) -> StorageError:
        native = self.error_as(error)
        return storage_error_for(
            self.classify_error(error),
            f"{operation} failed: {error}",
            original=error,
            status_code=getattr(native, "status_code", None),
        )

    async def copy(self, dst_key: str, src_key: str, opts: CopyOptions | None = None) -> None:
        opts = opts or CopyOptions()
        dst_blob = self._blob(dst_key)
        src_blob = self._blob(src_key)

        copy_kwargs: dict[str, Any] = {}
        await run_hook(opts.before_copy, copy_kwargs)

        logger.info("Starting blob copy", src=src_key, dst=dst_key)
        try:
            response = await dst_blob.start_copy_from_url(src_blob.url, **copy_kwargs)
        except AzureError as e:
            raise self._storage_error(e, f"copy {src_key!r} to {dst_key!r}") from e

        async def fetch_status() -> Any:
            properties = await dst_blob.get_blob_properties()
            return properties.copy.status

        try:
            await wait_for_copy(response.get("copy_status"), fetch_status)
        except AzureError as e:
            raise self._storage_error(e, f"copy {src_key!r} to {dst_key!r}") from e

    async def delete(self, key: str) -> None:
        try:
            await self._blob(key).delete_blob()
        except AzureError as e:
            raise self._storage_error(e, f"delete {key!r}") from e

    async def new_range_reader(
        self,
        key: str,
        offset: int = 0,
        length: int = -1,
        opts: ReaderOptions | None = None,
    ) -> Reader:
        if offset < 0:
            raise InvalidArgumentError(f"negative offset {offset}")
        opts = opts or ReaderOptions()
        blob = self._blob(key)

        if length == 0:
            # Nothing to read: resolve attributes without fetching any body.
            try:
                properties = await blob.get_blob_properties()
            except AzureError as e:
                raise self._storage_error(e, f"read {key!r}") from e
            attrs = ReaderAttributes(
                content_type=properties.content_settings.content_type or "",
                size=properties.size or 0,
                mod_time=properties.last_modified,
            )
            return AzureBlobReader(None, attrs, properties, self._storage_error, key)

        download_kwargs: dict[str, Any] = {
            "offset": offset,
            "retry_total": DEFAULT_MAX_DOWNLOAD_RETRIES,
        }
        if length > 0:
            download_kwargs["length"] = length
        await run_hook(opts.before_read, download_kwargs)

        try:
            downloader = await blob.download_blob(**download_kwargs)
        except AzureError as e:
            raise self._storage_error(e, f"read {key!r}") from e

        properties = downloader.properties
        attrs = ReaderAttributes(
            content_type=properties.content_settings.content_type or "",
            size=resolve_size(properties.size, properties.content_range),
            mod_time=properties.last_modified,
        )
        return AzureBlobReader(downloader, attrs, downloader, self._storage_error, key)

    async def new_typed_writer(
        self,
        key: str,
        content_type: str,
        opts: WriterOptions | None = None,
    ) -> Writer:
        opts = opts or WriterOptions()
        buffer_size = opts.buffer_size or DEFAULT_UPLOAD_BLOCK_SIZE
        max_concurrency = opts.max_concurrency or DEFAULT_UPLOAD_BUFFERS

        metadata: dict[str, str] = {}
        for k, v in opts.metadata.items():
            escaped = escape_metadata_key(k)
            if escaped in metadata:
                raise InvalidArgumentError(f"duplicate keys after escaping: {k!r} => {escaped!r}")
            metadata[escaped] = escape_metadata_value(v)

        upload_kwargs: dict[str, Any] = {
            "blob_type": BlobType.BLOCKBLOB,
            "overwrite": True,
            "max_concurrency": max_concurrency,
            "metadata": metadata,
            "content_settings": ContentSettings(
                content_type=content_type or None,
                content_encoding=opts.content_encoding or None,
                content_language=opts.content_language or None,
                content_disposition=opts.content_disposition or None,
                cache_control=opts.cache_control or None,
                content_md5=bytearray(opts.content_md5) if opts.content_md5 else None,
            ),
        }
        await run_hook(opts.before_write, upload_kwargs)

        return AzureBlobWriter(self._blob(key), upload_kwargs, buffer_size, self._storage_error, key)

    async def attributes(self, key: str) -> Attributes:
        try:
            properties = await self._blob(key).get_blob_properties()
        except AzureError as e:
            raise self._storage_error(e, f"get attributes of {key!r}") from e

        settings = properties.content_settings
        metadata = {
            unescape_metadata_key(k): unescape_metadata_value(v)
            for k, v in (properties.metadata or {}).items()
        }
        return Attributes(
            cache_control=settings.cache_control or "",
            content_disposition=settings.content_disposition or "",
            content_encoding=settings.content_encoding or "",
            content_language=settings.content_language or "",
            content_type=settings.content_type or "",
            size=properties.size or 0,
            create_time=properties.creation_time,
            mod_time=properties.last_modified,
            md5=bytes(settings.content_md5) if settings.content_md5 else None,
            etag=properties.etag or "",
            metadata=metadata,
            raw=properties,
        )

    async def list_paged(self, opts: ListOptions | None = None) -> ListPage:
        opts = opts or ListOptions()
        page_size = opts.page_size or DEFAULT_PAGE_SIZE
        prefix = escape_key(opts.prefix, True)
        delimiter = escape_key(opts.delimiter, True)

        list_kwargs: dict[str, Any] = {
            "name_starts_with": prefix or None,
            "results_per_page": page_size,
        }
        if delimiter:
            list_kwargs["delimiter"] = delimiter
        await run_hook(opts.before_list, list_kwargs)

        if list_kwargs.get("delimiter"):
            paged = self._client.walk_blobs(**list_kwargs)
        else:
            list_kwargs.pop("delimiter", None)
            paged = self._client.list_blobs(**list_kwargs)

        token = opts.page_token.decode("utf-8") if opts.page_token else None
        pages = paged.by_page(continuation_token=token)
        items: list[Any] = []
        try:
            page = await pages.__anext__()
            items = [item async for item in page]
        except StopAsyncIteration:
            pass
        except AzureError as e:
            raise self._storage_error(e, f"list {opts.prefix!r}") from e

        n_prefixes = 0
        n_blobs = 0
        objects: list[ListObject] = []
        for item in items:
            if isinstance(item, BlobProperties):
                n_blobs += 1
                settings = item.content_settings
                objects.append(
                    ListObject(
                        key=unescape_key(item.name),
                        size=item.size or 0,
                        mod_time=item.last_modified,
                        md5=bytes(settings.content_md5) if settings and settings.content_md5 else None,
                        is_dir=False,
                        raw=item,
                    )
                )
            else:
                n_prefixes += 1
                objects.append(ListObject(key=unescape_key(item.name), size=0, is_dir=True, raw=item))

        # Prefixes and blobs come back as two groups; present a single key order.
        if n_prefixes and n_blobs:
            objects.sort(key=lambda o: o.key)

        next_token = getattr(pages, "continuation_token", None)
        return ListPage(
            objects=objects,
            next_page_token=next_token.encode("utf-8") if next_token else None,
        )

    async def signed_url(self, key: str, opts: SignedURLOptions | None = None) -> str:
        """Sign ``key`` for one of the canonical verbs "GET", "PUT" or "DELETE"; case matters."""
        opts = opts or SignedURLOptions()
        if opts.content_type or opts.enforce_absent_content_type:
            raise UnimplementedError("azureblob: does not enforce Content-Type on PUT")

        method = opts.method
        if method == "GET":
            permission = BlobSasPermissions(read=True)
        elif method == "PUT":
            permission = BlobSasPermissions(create=True, write=True)
        elif method == "DELETE":
            permission = BlobSasPermissions(delete=True)
        else:
            raise InvalidArgumentError(f"unsupported method {opts.method}")
        await run_hook(opts.before_sign, permission)

        blob = self._blob(key)
        start = datetime.now(timezone.utc)
        expiry = start + opts.expiry
        sas_kwargs: dict[str, Any] = {
            "account_name": blob.account_name,
            "container_name": blob.container_name,
            "blob_name": blob.blob_name,
            "permission": permission,
            "start": start,
            "expiry": expiry,
        }

        account_key = getattr(blob.credential, "account_key", None)
        if account_key:
            sas_token = generate_blob_sas(account_key=account_key, **sas_kwargs)
        else:
            try:
                delegation_key = await self._service_client.get_user_delegation_key(start, expiry)
            except AzureError as e:
                raise self._storage_error(e, f"sign {key!r}") from e
            sas_token = generate_blob_sas(user_delegation_key=delegation_key, **sas_kwargs)
        return f"{blob.url}?{sas_token}"

    def error_as(self, error: BaseException) -> HttpResponseError | None:
        for err in _iter_error_chain(error):
            if isinstance(err, HttpResponseError):
                return err
        return None

    def classify_error(self, error: BaseException) -> ErrorCode:
        if isinstance(error, StorageError):
            return error.code

        native = self.error_as(error)
        if native is not None:
            error_code = getattr(native, "error_code", None)
            if error_code == StorageErrorCode.BLOB_NOT_FOUND or native.status_code == 404:
                return ErrorCode.NOT_FOUND
            if error_code == StorageErrorCode.AUTHENTICATION_FAILED:
                return ErrorCode.PERMISSION_DENIED
            return ErrorCode.UNKNOWN

        # An invalid account name shows up as a failed host lookup
        # (e.g. invalidaccount.blob.core.windows.net), not as an API error.
        if _is_host_lookup_failure(error):
            return ErrorCode.NOT_FOUND
        return ErrorCode.UNKNOWN


def open_bucket(
    service_client: BlobServiceClient,
    container_name: str,
    close_service_client: bool = False,
    credential: Any = None,
) -> AzureBlobBucket:
    """
    Open a bucket backed by an Azure Storage container.

    Args:
        service_client: Client for the storage account
        container_name: Name of the container
        close_service_client: Close ``service_client`` when the bucket closes
        credential: Async token credential to close along with ``service_client``

    Raises:
        InvalidArgumentError: If the client or container name is missing
    """
    if service_client is None:
        raise InvalidArgumentError("azureblob.open_bucket: client is required")
    if not container_name:
        raise InvalidArgumentError("azureblob.open_bucket: container_name is required")
    container_client = service_client.get_container_client(container_name)
    logger.info("Opened Azure bucket", container=container_name)
    return AzureBlobBucket(
        service_client,
        container_client,
        close_service_client=close_service_client,
        credential=credential,
    )
