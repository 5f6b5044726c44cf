import hashlib
import hmac
import re
from datetime import datetime, timezone
from typing import Dict, Optional
from urllib.parse import quote, urlparse

from apps.storage.interface import DEFAULT_EXPIRES_IN, raise_for_storage_status, storage_client
from apps.storage.schema import BlobMetadata, DeleteResult

UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"


def _uri_encode(value: str, safe: str = "-_.~") -> str:
    return quote(value, safe=safe)


class S3HTTPStorage:
    """S3 compatible backend talking plain HTTP with AWS Signature V4."""

    supports_upload_urls = True

    def __init__(
        self,
        endpoint: str,
        bucket: str,
        access_key: str,
        secret_key: str,
        region: str | None = None,
        virtual_host: bool = False,
        timeout: float | None = None,
    ):
        self.endpoint = endpoint.rstrip('/')
        self.bucket = bucket
        self.access_key = access_key
        self.secret_key = secret_key
        self.service = "s3"
        self.virtual_host = virtual_host
        self.timeout = timeout

        parsed = urlparse(self.endpoint)
        self.host = parsed.netloc
        if virtual_host:
            self.host = f"{bucket}.{parsed.netloc}"
        self.region = region or self._extract_region(self.endpoint)

    def _extract_region(self, endpoint: str) -> str:
        """Auto-detect region from endpoint URL"""
        patterns = [
            r's3[.-]([a-z0-9-]+)\.amazonaws\.com',
            r'([a-z0-9-]+)\.digitaloceanspaces\.com',
            r'([a-z0-9-]+)\.linodeobjects\.com',
            r's3\.([a-z0-9-]+)\.backblazeb2\.com',
            r's3\.([a-z0-9-]+)\.wasabisys\.com',
        ]
        for p in patterns:
            match = re.search(p, endpoint)
            if match:
                return match.group(1)

        # MinIO and generic S3 services commonly use "us-east-1"
        return "us-east-1"

    def _sign(self, key: bytes, msg: str) -> bytes:
        return hmac.new(key, msg.encode('utf-8'), hashlib.sha256).digest()

    def _get_signature_key(self, date_stamp: str) -> bytes:
        k_date = self._sign(f"AWS4{self.secret_key}".encode('utf-8'), date_stamp)
        k_region = self._sign(k_date, self.region)
        k_service = self._sign(k_region, self.service)
        return self._sign(k_service, 'aws4_request')

    def _make_url_and_path(self, blob_id: str):
        """
        Supports both:
            - path-style:       https://endpoint/bucket/blob
            - virtual-host:     https://bucket.endpoint/blob
        """
        key = _uri_encode(blob_id, safe="-_.~/")
        if self.virtual_host:
            url = f"{self.endpoint.replace('//', f'//{self.bucket}.')}/{key}"
            path = f"/{key}"
        else:
            url = f"{self.endpoint}/{self.bucket}/{key}"
            path = f"/{self.bucket}/{key}"

        return url, path

    def _scope(self, date_stamp: str) -> str:
        return f"{date_stamp}/{self.region}/{self.service}/aws4_request"

    def _signature(self, amz_date: str, date_stamp: str, canonical_request: str) -> str:
        string_to_sign = (
            f"AWS4-HMAC-SHA256\n"
            f"{amz_date}\n"
            f"{self._scope(date_stamp)}\n"
            f"{hashlib.sha256(canonical_request.encode()).hexdigest()}"
        )
        return hmac.new(
            self._get_signature_key(date_stamp),
            string_to_sign.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _auth_headers(self, method: str, path: str, payload: bytes = b'', now: datetime | None = None) -> dict:
        if not self.access_key or not self.secret_key:
            return {}

        now = now or datetime.now(timezone.utc)
        amz_date = now.strftime('%Y%m%dT%H%M%SZ')
        date_stamp = now.strftime('%Y%m%d')

        payload_hash = hashlib.sha256(payload).hexdigest()

        canonical_headers = (
            f'host:{self.host}\n'
            f'x-amz-content-sha256:{payload_hash}\n'
            f'x-amz-date:{amz_date}\n'
        )

        signed_headers = "host;x-amz-content-sha256;x-amz-date"

        canonical_request = (
            f"{method}\n"
            f"{path}\n"
            f""  # no query string
            f"\n{canonical_headers}\n"
            f"{signed_headers}\n"
            f"{payload_hash}"
        )

        signature = self._signature(amz_date, date_stamp, canonical_request)

        auth = (
            f"AWS4-HMAC-SHA256 "
            f"Credential={self.access_key}/{self._scope(date_stamp)}, "
            f"SignedHeaders={signed_headers}, "
            f"Signature={signature}"
        )

        return {
            "Authorization": auth,
            "x-amz-date": amz_date,
            "x-amz-content-sha256": payload_hash,
        }

    def presign(
        self,
        method: str,
        blob_id: str,
        expires_in: int = DEFAULT_EXPIRES_IN,
        extra_params: Optional[Dict[str, str]] = None,
        now: datetime | None = None,
    ) -> str:
        """Query-string signed URL, usable by clients without credentials."""
        url, path = self._make_url_and_path(blob_id)
        now = now or datetime.now(timezone.utc)
        amz_date = now.strftime('%Y%m%dT%H%M%SZ')
        date_stamp = now.strftime('%Y%m%d')

        params = dict(extra_params or {})
        params.update({
            "X-Amz-Algorithm": "AWS4-HMAC-SHA256",
            "X-Amz-Credential": f"{self.access_key}/{self._scope(date_stamp)}",
            "X-Amz-Date": amz_date,
            "X-Amz-Expires": str(expires_in),
            "X-Amz-SignedHeaders": "host",
        })
        canonical_query = "&".join(
            f"{_uri_encode(k)}={_uri_encode(v)}" for k, v in sorted(params.items())
        )

        canonical_request = (
            f"{method}\n"
            f"{path}\n"
            f"{canonical_query}\n"
            f"host:{self.host}\n"
            f"\nhost\n"
            f"{UNSIGNED_PAYLOAD}"
        )
        signature = self._signature(amz_date, date_stamp, canonical_request)
        return f"{url}?{canonical_query}&X-Amz-Signature={signature}"

    async def put(self, blob_id: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        url, path = self._make_url_and_path(blob_id)
        headers = self._auth_headers("PUT", path, data)
        headers["Content-Type"] = content_type

        async with storage_client(self.timeout) as client:
            resp = await client.put(url, content=data, headers=headers)
        raise_for_storage_status(resp, "S3 PUT", ok=(200, 201))

    async def get(self, blob_id: str) -> Optional[bytes]:
        url, path = self._make_url_and_path(blob_id)
        headers = self._auth_headers("GET", path, b"")

        async with storage_client(self.timeout) as client:
            resp = await client.get(url, headers=headers)
        if resp.status_code == 404:
            return None
        raise_for_storage_status(resp, "S3 GET", ok=(200,))
        return resp.content

    async def head(self, blob_id: str) -> Optional[BlobMetadata]:
        url, path = self._make_url_and_path(blob_id)
        headers = self._auth_headers("HEAD", path, b"")

        async with storage_client(self.timeout) as client:
            resp = await client.head(url, headers=headers)
        if resp.status_code == 404:
            return None
        raise_for_storage_status(resp, "S3 HEAD", ok=(200,))
        return BlobMetadata(
            content_length=int(resp.headers.get("Content-Length", 0)),
            content_type=resp.headers.get("Content-Type"),
        )

    async def exists(self, blob_id: str) -> bool:
        return await self.head(blob_id) is not None

    async def delete(self, blob_id: str) -> DeleteResult:
        url, path = self._make_url_and_path(blob_id)
        headers = self._auth_headers("DELETE", path, b"")

        async with storage_client(self.timeout) as client:
            resp = await client.delete(url, headers=headers)
        if resp.status_code == 404:
            return DeleteResult.NOT_FOUND
        raise_for_storage_status(resp, "S3 DELETE", ok=(200, 202, 204))
        return DeleteResult.DELETED

    async def generate_upload_url(self, blob_id: str, expires_in: int = DEFAULT_EXPIRES_IN) -> str:
        return self.presign("PUT", blob_id, expires_in)

    async def generate_download_url(
        self,
        blob_id: str,
        expires_in: int = DEFAULT_EXPIRES_IN,
        extra_params: Optional[Dict[str, str]] = None,
    ) -> str:
        return self.presign("GET", blob_id, expires_in, extra_params)
