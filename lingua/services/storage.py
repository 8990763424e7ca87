import asyncio
import json
import logging
import os
import random
import shutil
import string
import time
from typing import Protocol
from urllib.parse import quote, urlsplit

import aiofiles
import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from lingua.config import settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a blob cannot be persisted."""


class BlobStore(Protocol):
    async def save(self, local_path: str, filename: str) -> str: ...


def unique_name(prefix: str, ext: str) -> str:
    """``prefix-<ms>-<random>.ext``; blob and cache lookups rely on these never colliding."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}.{ext.lstrip('.')}"


async def write_json(path: str, data: dict | list) -> None:
    async with aiofiles.open(path, "w", encoding="utf-8") as f:
        await f.write(json.dumps(data, indent=2, ensure_ascii=False))


async def read_json(path: str) -> dict | list:
    async with aiofiles.open(path, encoding="utf-8") as f:
        return json.loads(await f.read())


class LocalStorage:
    """Blobs live in the uploads directory and are served from ``/uploads``."""

    def __init__(self, uploads_dir: str | None = None) -> None:
        self.uploads_dir = uploads_dir or settings.uploads_dir

    async def save(self, local_path: str, filename: str) -> str:
        target = os.path.join(self.uploads_dir, filename)
        if os.path.abspath(local_path) != os.path.abspath(target):
            try:
                os.makedirs(self.uploads_dir, exist_ok=True)
                shutil.move(local_path, target)
            except OSError as e:
                raise StorageError(f"Failed to store {filename}: {e}") from e
        return f"/uploads/{filename}"


class ObjectStorage:
    """S3-compatible bucket (the OSS endpoint speaks the S3 protocol).

    Uploaded temp files are removed afterwards. Returned URLs are always
    https and use ``custom_domain`` as host when one is configured.
    """

    def __init__(
        self,
        client=None,  # noqa: ANN001 - boto3 client
        *,
        bucket: str | None = None,
        endpoint: str | None = None,
        custom_domain: str | None = None,
    ) -> None:
        self.bucket = bucket or settings.oss_bucket
        self.endpoint = endpoint or settings.oss_endpoint or (
            f"https://{settings.oss_region}.aliyuncs.com" if settings.oss_region else ""
        )
        self.custom_domain = (
            settings.oss_custom_domain if custom_domain is None else custom_domain
        )
        if client is None:
            if not settings.oss_access_key_id:
                logger.warning("Object storage credentials missing; uploads will fail")
            client = boto3.client(
                "s3",
                endpoint_url=self.endpoint or None,
                region_name=settings.oss_region or None,
                aws_access_key_id=settings.oss_access_key_id or None,
                aws_secret_access_key=settings.oss_access_key_secret or None,
                config=Config(s3={"addressing_style": "virtual"}),
            )
        self._client = client

    def public_url(self, key: str) -> str:
        host = self.custom_domain or f"{self.bucket}.{urlsplit(self.endpoint).netloc}"
        return f"https://{host}/{quote(key)}"

    async def save(self, local_path: str, filename: str) -> str:
        try:
            # boto3 is blocking; keep the event loop free
            await asyncio.to_thread(self._client.upload_file, local_path, self.bucket, filename)
        except (BotoCoreError, ClientError, OSError) as e:
            logger.error("Object storage upload failed for %s: %s", filename, e)
            raise StorageError(f"Failed to upload {filename}: {e}") from e

        try:
            os.remove(local_path)
        except OSError as e:
            logger.warning("Failed to delete temp file %s: %s", local_path, e)

        return self.public_url(filename)


_storage: BlobStore | None = None


def get_storage() -> BlobStore:
    """Return the process-wide blob store selected by ``settings.storage_mode``."""
    global _storage
    if _storage is None:
        if settings.storage_mode == "oss":
            _storage = ObjectStorage()
        else:
            _storage = LocalStorage()
        logger.info("Storage initialized in %s mode", settings.storage_mode)
    return _storage
