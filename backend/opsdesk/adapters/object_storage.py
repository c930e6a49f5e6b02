import re
from datetime import datetime, timezone
from typing import Optional

import httpx

from opsdesk.utils.log import get_logger

log = get_logger("storage")


class StorageError(Exception):
    pass


class BucketNotFound(StorageError):
    """The target bucket does not exist; callers may retry in another bucket."""
    pass


class SupabaseStorageAdapter:
    """
    Upload objects through the Supabase Storage REST API and hand back their public URL.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: Optional[str],
        service_key: Optional[str],
        bucket: str = "refund-receipts",
        fallback_bucket: Optional[str] = None,
    ):
        self.client = client
        self.base_url = (base_url or "").rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.fallback_bucket = fallback_bucket

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.service_key)

    def public_url(self, bucket: str, name: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{name}"

    async def upload(self, data: bytes, content_type: str, name: str, bucket: Optional[str] = None) -> str:
        if not self.is_configured:
            raise StorageError("Object storage credentials not configured")
        bucket = bucket or self.bucket
        try:
            resp = await self.client.post(
                f"{self.base_url}/storage/v1/object/{bucket}/{name}",
                content=data,
                headers={
                    "Authorization": f"Bearer {self.service_key}",
                    "Content-Type": content_type,
                    "x-upsert": "true",
                },
            )
        except httpx.HTTPError as e:
            raise StorageError(f"upload to {bucket} failed: {e}") from e

        if resp.status_code >= 400:
            detail = resp.text
            if resp.status_code == 404 or "bucket not found" in detail.lower():
                raise BucketNotFound(f"bucket {bucket!r} not found")
            raise StorageError(f"upload to {bucket} failed ({resp.status_code}): {detail}")
        return self.public_url(bucket, name)

    async def upload_refund_receipt(self, data: bytes, order_number: str) -> str:
        safe_order = re.sub(r"[^A-Za-z0-9_-]", "", order_number or "") or "sin-pedido"
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        name = f"refunds/{safe_order}_{stamp}.pdf"
        try:
            return await self.upload(data, "application/pdf", name)
        except BucketNotFound:
            if not self.fallback_bucket:
                raise
            log.warning(f"bucket {self.bucket!r} missing, retrying in {self.fallback_bucket!r}")
            return await self.upload(data, "application/pdf", name, bucket=self.fallback_bucket)
