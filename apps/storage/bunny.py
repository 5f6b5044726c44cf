"""Bunny.net edge storage with delivery through a CDN pull zone.

The storage API has no presigned uploads, clients go through the upload
proxy. Downloads are served from the CDN and signed with the pull zone's
token key when one is configured.
"""
import base64
import hashlib
import re
import time
from typing import Dict, Optional
from urllib.parse import quote

from apps.storage.interface import (
    DEFAULT_EXPIRES_IN,
    raise_for_storage_status,
    storage_client,
    unsupported_upload_urls,
)
from apps.storage.schema import BlobMetadata, DeleteResult


def encode_query_value(value: str) -> str:
    """Percent-encode like JavaScript's encodeURIComponent."""
    return quote(value, safe="-_.!~*'()")


def sorted_query_string(params: Optional[Dict[str, str]]) -> str:
    if not params:
        return ""
    return "&".join(f"{k}={encode_query_value(v)}" for k, v in sorted(params.items()))


def cdn_token(token_key: str, path: str, expires: int, query_string: str = "") -> str:
    """SHA256(key + path + expires + sorted query), base64url without padding."""
    digest = hashlib.sha256(f"{token_key}{path}{expires}{query_string}".encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def sign_cdn_url(
    base_url: str,
    path: str,
    token_key: str,
    expires_in: int,
    extra_params: Optional[Dict[str, str]] = None,
    now: Optional[float] = None,
) -> str:
    expires = int(now if now is not None else time.time()) + expires_in
    query_string = sorted_query_string(extra_params)
    token = cdn_token(token_key, path, expires, query_string)
    url = f"{base_url}{path}?token={token}&expires={expires}"
    if query_string:
        url += f"&{query_string}"
    return url


class BunnyStorage:
    supports_upload_urls = False

    def __init__(
        self,
        api_key: str,
        storage_zone_name: str,
        cdn_hostname: str,
        region: str = "",
        token_key: str | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key
        self.storage_zone_name = storage_zone_name
        self.token_key = token_key
        self.timeout = timeout
        # Frankfurt is the unprefixed default
        self.storage_host = f"{region}.storage.bunnycdn.com" if region else "storage.bunnycdn.com"
        self.cdn_base_url = f"https://{cdn_hostname}"

    def _storage_url(self, key: str) -> str:
        return f"https://{self.storage_host}/{self.storage_zone_name}/{key}"

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        headers = {
            "AccessKey": self.api_key,
            "Content-Type": content_type,
            "Content-Length": str(len(data)),
        }
        async with storage_client(self.timeout) as client:
            resp = await client.put(self._storage_url(key), content=data, headers=headers)
        raise_for_storage_status(resp, "Bunny PUT", ok=(200, 201))

    async def get(self, key: str) -> Optional[bytes]:
        async with storage_client(self.timeout) as client:
            resp = await client.get(self._storage_url(key), headers={"AccessKey": self.api_key})
        if resp.status_code == 404:
            return None
        raise_for_storage_status(resp, "Bunny GET", ok=(200,))
        return resp.content

    async def head(self, key: str) -> Optional[BlobMetadata]:
        # no HEAD endpoint: fetch the first byte and read the total from Content-Range
        headers = {"AccessKey": self.api_key, "Range": "bytes=0-0"}
        async with storage_client(self.timeout) as client:
            resp = await client.get(self._storage_url(key), headers=headers)
        if resp.status_code == 404:
            return None
        raise_for_storage_status(resp, "Bunny HEAD", ok=(200, 206))

        content_length = 0
        content_range = resp.headers.get("Content-Range")
        if content_range:
            match = re.search(r"/(\d+)$", content_range)
            if match:
                content_length = int(match.group(1))
        elif resp.headers.get("Content-Length"):
            content_length = int(resp.headers["Content-Length"])
        return BlobMetadata(content_length=content_length, content_type=resp.headers.get("Content-Type"))

    async def exists(self, key: str) -> bool:
        return await self.head(key) is not None

    async def delete(self, key: str) -> DeleteResult:
        async with storage_client(self.timeout) as client:
            resp = await client.delete(self._storage_url(key), headers={"AccessKey": self.api_key})
        if resp.status_code == 404:
            return DeleteResult.NOT_FOUND
        raise_for_storage_status(resp, "Bunny DELETE", ok=(200, 204))
        return DeleteResult.DELETED

    async def generate_upload_url(self, key: str, expires_in: int = DEFAULT_EXPIRES_IN) -> str:
        raise unsupported_upload_urls("Bunny.net")

    async def generate_download_url(
        self,
        key: str,
        expires_in: int = DEFAULT_EXPIRES_IN,
        extra_params: Optional[Dict[str, str]] = None,
    ) -> str:
        path = f"/{key}"
        if self.token_key:
            return sign_cdn_url(self.cdn_base_url, path, self.token_key, expires_in, extra_params)
        query_string = sorted_query_string(extra_params)
        if query_string:
            return f"{self.cdn_base_url}{path}?{query_string}"
        return f"{self.cdn_base_url}{path}"
