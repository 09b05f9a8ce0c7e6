import asyncio
import logging
import re
from typing import Iterable, List, Optional
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from webtoon_api.config import (
    AWS_ACCESS_KEY_ID,
    AWS_SECRET_ACCESS_KEY,
    AWS_REGION,
    MEDIA_CDN_BASE,
    S3_ENDPOINT_URL,
)

logger = logging.getLogger(__name__)


def sanitize_folder_name(name: str) -> str:
    # Remove or replace any non-safe S3 characters
    return re.sub(r'[^a-zA-Z0-9_\-]', '_', name)


def file_extension(filename: Optional[str], default: str = "jpg") -> str:
    if filename and "." in filename:
        ext = sanitize_folder_name(filename.rsplit(".", 1)[-1].lower())
        if ext:
            return ext
    return default


def webtoon_folder(webtoon_id: str) -> str:
    return f"public/{sanitize_folder_name(str(webtoon_id))}"


def chapter_folder(webtoon_id: str, chapter_id: int) -> str:
    return f"{webtoon_folder(webtoon_id)}/{chapter_id}"


def chapter_pages_folder(webtoon_id: str, chapter_id: int) -> str:
    return f"{chapter_folder(webtoon_id, chapter_id)}/pages"


def chapter_page_path(webtoon_id: str, chapter_id: int, page_number: int, filename: Optional[str]) -> str:
    """public/<webtoon>/<chapter>/pages/page_007.png"""
    return f"{chapter_pages_folder(webtoon_id, chapter_id)}/page_{page_number:03d}.{file_extension(filename)}"


def chapter_thumbnail_path(webtoon_id: str, chapter_id: int, filename: Optional[str]) -> str:
    return f"{chapter_folder(webtoon_id, chapter_id)}/thumbnail.{file_extension(filename)}"


def webtoon_image_path(webtoon_id: str, kind: str, filename: Optional[str]) -> str:
    """kind is "cover" or "banner"."""
    return f"{webtoon_folder(webtoon_id)}/{kind}.{file_extension(filename)}"


class BlobStorage:
    """Bucket/path keyed object store. Uploads overwrite whatever sits at the path."""

    async def upload(self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        raise NotImplementedError

    def get_public_url(self, bucket: str, path: str) -> Optional[str]:
        raise NotImplementedError

    async def get_signed_url(self, bucket: str, path: str, ttl: int) -> Optional[str]:
        raise NotImplementedError

    async def remove(self, bucket: str, paths: Iterable[str]) -> None:
        raise NotImplementedError

    async def list(self, bucket: str, prefix: str) -> List[str]:
        """Names (not full paths) of the objects directly under prefix."""
        raise NotImplementedError

    async def remove_folder(self, bucket: str, prefix: str) -> None:
        names = await self.list(bucket, prefix)
        if names:
            await self.remove(bucket, [f"{prefix}/{name}" for name in names])


class S3Storage(BlobStorage):
    def __init__(self, *, region: Optional[str] = None, endpoint_url: Optional[str] = None,
                 access_key: Optional[str] = None, secret_key: Optional[str] = None,
                 public_base_url: Optional[str] = None) -> None:
        self.region = region
        self.client = boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=Config(signature_version="s3v4"),
        )
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    async def upload(self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        extra = {"CacheControl": "max-age=3600"}
        if content_type:
            extra["ContentType"] = content_type
        # boto3 is blocking; run it off the event loop so uploads can overlap
        await asyncio.to_thread(
            self.client.put_object, Bucket=bucket, Key=path, Body=data, **extra
        )
        return path

    def get_public_url(self, bucket: str, path: str) -> Optional[str]:
        if not path or not bucket:
            return None
        key_encoded = quote(path, safe="/-._")
        if self.public_base_url:
            return f"{self.public_base_url}/{key_encoded}"
        return f"https://{bucket}.s3.{self.region}.amazonaws.com/{key_encoded}"

    async def get_signed_url(self, bucket: str, path: str, ttl: int) -> Optional[str]:
        if not path or not bucket:
            return None
        try:
            return await asyncio.to_thread(
                self.client.generate_presigned_url,
                ClientMethod="get_object",
                Params={"Bucket": bucket, "Key": path},
                ExpiresIn=int(ttl),
            )
        except ClientError as e:
            logger.error("Could not sign %s/%s: %s", bucket, path, e)
            return None

    async def remove(self, bucket: str, paths: Iterable[str]) -> None:
        keys = [p for p in paths if p]
        # delete_objects takes at most 1000 keys per call
        for start in range(0, len(keys), 1000):
            chunk = keys[start:start + 1000]
            await asyncio.to_thread(
                self.client.delete_objects,
                Bucket=bucket,
                Delete={"Objects": [{"Key": k} for k in chunk], "Quiet": True},
            )

    async def list(self, bucket: str, prefix: str) -> List[str]:
        folder = prefix.rstrip("/") + "/"

        def _list() -> List[str]:
            names = []
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=folder, Delimiter="/"):
                for obj in page.get("Contents", []):
                    names.append(obj["Key"][len(folder):])
            return names

        return await asyncio.to_thread(_list)


_storage: Optional[BlobStorage] = None


def get_storage() -> BlobStorage:
    """FastAPI dependency; the S3 client is created on first use."""
    global _storage
    if _storage is None:
        _storage = S3Storage(
            region=AWS_REGION,
            endpoint_url=S3_ENDPOINT_URL,
            access_key=AWS_ACCESS_KEY_ID,
            secret_key=AWS_SECRET_ACCESS_KEY,
            public_base_url=MEDIA_CDN_BASE or None,
        )
    return _storage


async def resolve_url(storage: BlobStorage, bucket: str, path: Optional[str], *, signed: bool = False,
                      ttl: int = 3600) -> Optional[str]:
    if not path:
        return None
    if signed:
        return await storage.get_signed_url(bucket, path, ttl)
    return storage.get_public_url(bucket, path)


async def delete_quietly(storage: BlobStorage, bucket: str, paths: Iterable[str]) -> None:
    """Best-effort removal: failures are logged and swallowed."""
    paths = [p for p in paths if p]
    if not paths:
        return
    try:
        await storage.remove(bucket, paths)
    except Exception as e:
        logger.warning("Failed to delete %s from %s: %s", paths, bucket, e)
