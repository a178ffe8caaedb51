"""AWS S3 object store."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import ObjectNotFound, ObjectStoreError
from ..uploads import normalize_object_path
from .base import BaseObjectStore

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class S3ObjectStore(BaseObjectStore):
    """Object store backed by an S3 bucket (or an S3-compatible service)."""

    def __init__(
        self,
        bucket_name: str,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        region_name: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        client: Any = None,
        **kwargs,
    ) -> None:
        """
        Args:
            bucket_name: S3 bucket name
            aws_access_key_id: AWS access key (or use IAM role)
            aws_secret_access_key: AWS secret key (or use IAM role)
            region_name: AWS region
            endpoint_url: Optional custom endpoint (for MinIO and friends)
            client: Pre-built boto3 S3 client, mainly for tests
        """
        super().__init__(**kwargs)
        self.bucket_name = bucket_name
        self.region_name = region_name
        self.s3_client = client or boto3.client(
            "s3",
            aws_access_key_id=aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key,
            region_name=region_name,
            endpoint_url=endpoint_url,
            config=Config(signature_version="s3v4"),
        )

    async def _sign_upload(
        self, object_path: str, content_type: str, expires_in: int
    ) -> str:
        def _generate_url() -> str:
            return self.s3_client.generate_presigned_url(
                "put_object",
                Params={
                    "Bucket": self.bucket_name,
                    "Key": object_path,
                    "ContentType": content_type,
                },
                ExpiresIn=expires_in,
            )

        try:
            return await asyncio.to_thread(_generate_url)
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreError(f"Could not sign upload for {object_path}: {exc}") from exc

    async def delete_object(self, object_path: str) -> None:
        path = normalize_object_path(object_path)

        def _delete() -> None:
            try:
                self.s3_client.delete_object(Bucket=self.bucket_name, Key=path)
            except ClientError as exc:
                if _error_code(exc) in _NOT_FOUND_CODES:
                    logger.debug(f"Object {path} already absent")
                    return
                raise

        try:
            await asyncio.to_thread(_delete)
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreError(f"Failed to delete {path}: {exc}") from exc

    async def read_object(self, object_path: str) -> bytes:
        path = normalize_object_path(object_path)

        def _download() -> bytes:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=path)
            return response["Body"].read()

        try:
            return await asyncio.to_thread(_download)
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                raise ObjectNotFound(path) from exc
            raise ObjectStoreError(f"Failed to read {path}: {exc}") from exc
        except BotoCoreError as exc:
            raise ObjectStoreError(f"Failed to read {path}: {exc}") from exc

    async def object_exists(self, object_path: str) -> bool:
        path = normalize_object_path(object_path)

        def _check() -> bool:
            try:
                self.s3_client.head_object(Bucket=self.bucket_name, Key=path)
                return True
            except ClientError as exc:
                if _error_code(exc) in _NOT_FOUND_CODES:
                    return False
                raise

        try:
            return await asyncio.to_thread(_check)
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreError(f"Failed to inspect {path}: {exc}") from exc
