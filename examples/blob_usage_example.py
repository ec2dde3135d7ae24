"""
Example application using an Azure container through the Bucket contract.

This example shows how to:
1. Configure logging and open a bucket from AZURE_STORAGE_* settings
2. Stream an object in and read part of it back
3. Page through a listing with a delimiter
4. Copy, sign and delete objects

Run it against the local storage emulator, for example:

    AZURE_STORAGE_ACCOUNT=devstoreaccount1 \\
    AZURE_STORAGE_KEY=<emulator key> \\
    AZURE_STORAGE_DOMAIN=127.0.0.1:10000 \\
    AZURE_STORAGE_PROTOCOL=http \\
    python examples/blob_usage_example.py my-container
"""

import asyncio
import sys

import structlog

from blobkit.factories.storage_factory import create_bucket
from blobkit.storage import ListOptions, NotFoundError, SignedURLOptions, WriterOptions
from blobkit.utils.logging_config import configure_logging

logger = structlog.get_logger(__name__)


async def main(container_name: str) -> None:
    configure_logging()

    async with create_bucket(container_name) as bucket:
        # Stream an object in small pieces
        opts = WriterOptions(buffer_size=4 * 1024 * 1024, metadata={"origin": "example"})
        async with await bucket.new_typed_writer("docs/hello.txt", "text/plain", opts) as writer:
            for line in (b"hello\n", b"from\n", b"blobkit\n"):
                await writer.write(line)

        async with await bucket.new_range_reader("docs/hello.txt", offset=6, length=4) as reader:
            data = await reader.read()
            logger.info("Read range", data=data, size=reader.attributes.size)

        attrs = await bucket.attributes("docs/hello.txt")
        logger.info("Attributes", content_type=attrs.content_type, metadata=attrs.metadata)

        await bucket.copy("docs/copy.txt", "docs/hello.txt")

        page_token = None
        while True:
            page = await bucket.list_paged(ListOptions(delimiter="/", page_token=page_token, page_size=100))
            for obj in page.objects:
                logger.info("Listed", key=obj.key, is_dir=obj.is_dir, size=obj.size)
            if page.is_last:
                break
            page_token = page.next_page_token

        url = await bucket.signed_url("docs/hello.txt", SignedURLOptions(method="GET"))
        logger.info("Signed URL", url=url)

        for key in ("docs/hello.txt", "docs/copy.txt"):
            await bucket.delete(key)

        try:
            await bucket.attributes("docs/hello.txt")
        except NotFoundError:
            logger.info("Object deleted", key="docs/hello.txt")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "blobkit-example"))
