import logging
from functools import lru_cache
from typing import Optional

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import HTTPException

from ..settings import settings

logger = logging.getLogger(__name__)


class BucketStorage:
    """Single bucket holding raw and annotated images, addressed by filename."""

    def __init__(
        self,
        s3_client,
        bucket: str,
        public_base_url: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        http=requests,
    ):
        self.s3_client = s3_client
        self.bucket = bucket
        self.public_base_url = public_base_url
        self.endpoint_url = endpoint_url
        self.region = region
        self.http = http

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        if self.region:
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def upload(self, key: str, data: bytes, content_type: str) -> str:
        """PUT ``data`` under ``key`` (overwriting) and return its public URL."""
        try:
            presigned_url = self.s3_client.generate_presigned_url(
                "put_object",
                Params={
                    "Bucket": self.bucket,
                    "Key": key,
                    "ContentType": content_type,
                },
                ExpiresIn=3600,
                HttpMethod = "PUT",
            )
        except (ClientError, BotoCoreError) as e:
            logger.exception("Failed to generate presigned URL: %s", e)
            raise HTTPException(status_code = 502, detail = "Failed to generate presigned URL")

        headers = {
            "Content-Type": content_type
        }
        try:
            resp = self.http.put(presigned_url, data = data, headers = headers)
        except requests.RequestException as e:
            logger.exception("Failed to upload image to storage: %s", e)
            raise HTTPException(status_code = 502, detail = "Failed to upload image to storage")
        if resp.status_code not in (200, 204):
            logger.error("Failed to upload image to storage: status=%s bucket=%s key=%s response=%s",
                resp.status_code, self.bucket, key, resp.text)
            raise HTTPException(status_code = 502, detail = "Failed to upload image to storage")
        return self.public_url(key)

    def remove(self, key: str) -> None:
        self.s3_client.delete_object(Bucket=self.bucket, Key=key)


@lru_cache(maxsize=1)
def get_storage() -> BucketStorage:
    s3_client = boto3.client(
        "s3",
        region_name = settings.aws_region,
        endpoint_url = settings.s3_endpoint_url,
    )
    return BucketStorage(
        s3_client,
        settings.s3_bucket,
        public_base_url = settings.storage_public_url,
        endpoint_url = settings.s3_endpoint_url,
        region = settings.aws_region,
    )
