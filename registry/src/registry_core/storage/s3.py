"""S3-compatible blob store backed by boto3."""

from __future__ import annotations

import logging
from typing import Any, Iterator, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import BackendError, NotFoundError
from .base import ARCHIVE_CONTENT_TYPE, BlobStore
from .keys import KEY_PREFIX

LOGGER = logging.getLogger(__name__)

# SigV4 with path-style addressing works for AWS as well as MinIO-style endpoints.
S3_CONFIG = Config(signature_version="s3v4", s3={"addressing_style": "path"})

_MISSING_CODES = frozenset({"404", "NoSuchKey", "NotFound"})
_MISSING_BUCKET_CODES = frozenset({"404", "NoSuchBucket", "NotFound"})
_DELETE_BATCH = 1000


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def create_s3_client(
    *,
    endpoint_url: Optional[str],
    region: str,
    access_key: Optional[str],
    secret_key: Optional[str],
) -> Any:
    return boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        region_name=region,
        aws_access_key_id=access_key,
        aws_secret_access_key=secret_key,
        config=S3_CONFIG,
    )


class S3BlobStore(BlobStore):
    """Archives stored as objects; downloads go through presigned URLs.

    ``prefix`` roots the store inside the bucket so an isolated instance
    (the upstream cache) can share a bucket without sharing keys.
    """

    def __init__(
        self,
        client: Any,
        bucket: str,
        *,
        signed_url_ttl: int = 3600,
        prefix: str = "",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._client = client
        self.bucket = bucket
        self._signed_url_ttl = signed_url_ttl
        self.prefix = prefix
        self._logger = logger or LOGGER

    def _object_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def ensure_ready(self) -> None:
        try:
            self._client.head_bucket(Bucket=self.bucket)
            return
        except ClientError as exc:
            if _error_code(exc) not in _MISSING_BUCKET_CODES:
                raise BackendError(f"Cannot access bucket {self.bucket}: {exc}") from exc
        except BotoCoreError as exc:
            raise BackendError(f"Cannot reach object storage: {exc}") from exc

        try:
            self._client.create_bucket(Bucket=self.bucket)
        except ClientError as exc:
            if _error_code(exc) not in {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}:
                raise BackendError(f"Failed to create bucket {self.bucket}: {exc}") from exc
        except BotoCoreError as exc:
            raise BackendError(f"Cannot reach object storage: {exc}") from exc
        self._logger.info("Created bucket %s", self.bucket)

    def put_archive(self, key: str, data: bytes, content_type: str = ARCHIVE_CONTENT_TYPE) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=self._object_key(key),
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            raise BackendError(f"Failed to store archive {key}: {exc}") from exc

    def get_archive(self, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=self._object_key(key))
            return response["Body"].read()
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                raise NotFoundError(f"Archive not found: {key}") from exc
            raise BackendError(f"Failed to read archive {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise BackendError(f"Failed to read archive {key}: {exc}") from exc

    def exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=self._object_key(key))
            return True
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                return False
            raise BackendError(f"Failed to stat archive {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise BackendError(f"Failed to stat archive {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=self._object_key(key))
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                return
            raise BackendError(f"Failed to delete archive {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise BackendError(f"Failed to delete archive {key}: {exc}") from exc

    def get_download_url(self, key: str) -> str:
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": self._object_key(key)},
                ExpiresIn=self._signed_url_ttl,
            )
        except (ClientError, BotoCoreError) as exc:
            raise BackendError(f"Failed to sign download URL for {key}: {exc}") from exc

    def list_keys(self) -> Iterator[str]:
        list_prefix = self._object_key(f"{KEY_PREFIX}/")
        token: Optional[str] = None
        while True:
            params: dict[str, Any] = {"Bucket": self.bucket, "Prefix": list_prefix}
            if token:
                params["ContinuationToken"] = token
            try:
                response = self._client.list_objects_v2(**params)
            except (ClientError, BotoCoreError) as exc:
                raise BackendError(f"Failed to list archives: {exc}") from exc
            for item in response.get("Contents", []):
                yield item["Key"][len(self.prefix):]
            if not response.get("IsTruncated"):
                return
            token = response.get("NextContinuationToken")

    def clear(self) -> int:
        keys = [self._object_key(key) for key in self.list_keys()]
        for start in range(0, len(keys), _DELETE_BATCH):
            batch = keys[start : start + _DELETE_BATCH]
            try:
                self._client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as exc:
                raise BackendError(f"Failed to clear archives: {exc}") from exc
        return len(keys)


__all__ = ["S3BlobStore", "create_s3_client", "S3_CONFIG"]
