"""S3-compatible object storage backend (AWS S3, Cloudflare R2, Backblaze B2, MinIO)."""

import asyncio
import json
from typing import Any

import boto3
from botocore.exceptions import ClientError

from posvault.models import Envelope, UploadResult, parse_envelope
from posvault.storage.backends.base import StorageBackend


class S3Backend(StorageBackend):
    """Stores envelopes as JSON objects in a bucket.

    boto3 is blocking, so every call runs in a worker thread.
    """

    def __init__(
        self,
        backend_id: str,
        bucket: str,
        client: Any | None = None,
        prefix: str = "",
        endpoint_url: str | None = None,
        region: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
    ):
        super().__init__(backend_id)
        if not bucket:
            raise ValueError("bucket is required for S3Backend")
        self.bucket = bucket
        self.prefix = prefix
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )
        self.logger.info("S3Backend initialized", backend=backend_id, bucket=bucket)

    def _key(self, name: str) -> str:
        if self.prefix and not name.startswith(self.prefix):
            return f"{self.prefix}{name}"
        return name

    def _object_url(self, key: str) -> str:
        endpoint = getattr(getattr(self.client, "meta", None), "endpoint_url", None)
        if endpoint:
            return f"{endpoint.rstrip('/')}/{self.bucket}/{key}"
        return f"s3://{self.bucket}/{key}"

    async def upload(self, envelope: Envelope, name: str) -> UploadResult:
        key = self._key(name)
        body = json.dumps(envelope.to_wire()).encode("utf-8")

        await asyncio.to_thread(
            self.client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=body,
            ContentType="application/json",
            Metadata={"uploaded-from": "posvault-backup"},
        )

        self.logger.info("Backup uploaded", backend=self.backend_id, key=key)
        return UploadResult(id=key, locator=self._object_url(key))

    async def download(self, file_id: str) -> Envelope:
        response = await asyncio.to_thread(
            self.client.get_object, Bucket=self.bucket, Key=self._key(file_id)
        )
        body = await asyncio.to_thread(response["Body"].read)
        return parse_envelope(body)

    async def delete(self, file_id: str) -> None:
        try:
            await asyncio.to_thread(
                self.client.delete_object, Bucket=self.bucket, Key=self._key(file_id)
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return
            raise
