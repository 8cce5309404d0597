from __future__ import annotations

import logging
from typing import Any, Iterable

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from vidvault.core.errors import BackendError
from vidvault.core.settings import Settings

logger = logging.getLogger(__name__)

PART_URL_EXPIRES = 60 * 60  # 60 min
PLAYBACK_URL_EXPIRES = 60 * 60
CORS_METHODS = ("GET", "PUT", "POST", "DELETE", "HEAD")
CORS_EXPOSE_HEADERS = ("ETag", "x-amz-request-id", "x-amz-id-2")
CORS_MAX_AGE_SECONDS = 3000


def _s3_client(settings: Settings):
    kwargs: dict = {
        "service_name": "s3",
        "region_name": settings.s3_region,
        "config": Config(signature_version="s3v4"),
    }
    if settings.s3_endpoint_url:
        kwargs["endpoint_url"] = settings.s3_endpoint_url
    if settings.s3_access_key_id and settings.s3_secret_access_key:
        kwargs["aws_access_key_id"] = settings.s3_access_key_id
        kwargs["aws_secret_access_key"] = settings.s3_secret_access_key
    return boto3.client(**kwargs)


class ObjectStorage:
    """
    Blocking wrapper around an S3 client.

    Every botocore failure surfaces as `BackendError`. Async callers run these
    methods with `asyncio.to_thread`.
    """

    def __init__(self, client: Any, *, bucket: str, region: str) -> None:
        self._client = client
        self.bucket = bucket
        self.region = region

    def _fail(self, op: str, key: str, e: Exception) -> BackendError:
        logger.error(
            "S3 %s failed",
            op,
            extra={"extra_data": {"bucket": self.bucket, "key": key, "error": str(e)}},
        )
        return BackendError(f"Storage {op} failed: {e}", code="STORAGE_ERROR", metadata={"operation": op})

    def create_multipart_upload(self, *, key: str, content_type: str) -> str:
        try:
            res = self._client.create_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise self._fail("create_multipart_upload", key, e) from e
        upload_id = res.get("UploadId")
        if not upload_id:
            raise BackendError("Storage returned no upload id", code="STORAGE_ERROR")
        return str(upload_id)

    def presign_upload_part(
        self, *, key: str, upload_id: str, part_number: int, expires_in: int = PART_URL_EXPIRES
    ) -> str:
        try:
            return self._client.generate_presigned_url(
                ClientMethod="upload_part",
                Params={
                    "Bucket": self.bucket,
                    "Key": key,
                    "UploadId": upload_id,
                    "PartNumber": int(part_number),
                },
                ExpiresIn=int(expires_in),
            )
        except (BotoCoreError, ClientError) as e:
            raise self._fail("presign_upload_part", key, e) from e

    def complete_multipart_upload(
        self, *, key: str, upload_id: str, parts: Iterable[dict[str, Any]]
    ) -> str:
        # S3 rejects out-of-order part lists.
        ordered = sorted(
            ({"PartNumber": int(p["PartNumber"]), "ETag": str(p["ETag"])} for p in parts),
            key=lambda p: p["PartNumber"],
        )
        try:
            res = self._client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": ordered},
            )
        except (BotoCoreError, ClientError) as e:
            raise self._fail("complete_multipart_upload", key, e) from e
        return str(res.get("Location") or f"s3://{self.bucket}/{key}")

    def abort_multipart_upload(self, *, key: str, upload_id: str) -> None:
        try:
            self._client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)
        except (BotoCoreError, ClientError) as e:
            raise self._fail("abort_multipart_upload", key, e) from e

    def upload_file(self, *, path: str, key: str, content_type: str) -> None:
        try:
            self._client.upload_file(
                Filename=path,
                Bucket=self.bucket,
                Key=key,
                ExtraArgs={"ContentType": content_type},
            )
        except (BotoCoreError, ClientError) as e:
            raise self._fail("upload_file", key, e) from e

    def delete_object(self, *, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise self._fail("delete_object", key, e) from e

    def presign_get(self, *, key: str, expires_in: int = PLAYBACK_URL_EXPIRES) -> str:
        try:
            return self._client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=int(expires_in),
            )
        except (BotoCoreError, ClientError) as e:
            raise self._fail("presign_get", key, e) from e

    def put_bucket_cors(
        self, *, origins: Iterable[str], max_age_seconds: int = CORS_MAX_AGE_SECONDS
    ) -> dict[str, Any]:
        # Browsers need ETag exposed to build the completion manifest.
        allowed = list(dict.fromkeys(o.rstrip("/") for o in origins if o))
        if not allowed:
            raise BackendError("At least one CORS origin is required", code="STORAGE_ERROR")
        rule = {
            "AllowedHeaders": ["*"],
            "AllowedMethods": list(CORS_METHODS),
            "AllowedOrigins": allowed,
            "ExposeHeaders": list(CORS_EXPOSE_HEADERS),
            "MaxAgeSeconds": int(max_age_seconds),
        }
        try:
            self._client.put_bucket_cors(Bucket=self.bucket, CORSConfiguration={"CORSRules": [rule]})
        except (BotoCoreError, ClientError) as e:
            raise self._fail("put_bucket_cors", "", e) from e
        logger.info("Bucket CORS configured", extra={"extra_data": {"bucket": self.bucket, "origins": allowed}})
        return rule


def storage_from_settings(settings: Settings) -> ObjectStorage:
    if not settings.s3_bucket:
        raise BackendError("S3 is not configured (missing S3_BUCKET)", code="STORAGE_NOT_CONFIGURED")
    return ObjectStorage(_s3_client(settings), bucket=settings.s3_bucket, region=settings.s3_region)
