"""Cloudflare R2 publisher for assembled videos.

R2 speaks the S3 API, so the publisher uses a boto3 S3 client pointed at
``https://<account>.r2.cloudflarestorage.com``. boto3 is blocking; calls run
in a worker thread via asyncio.to_thread so the event loop stays free.

URL Strategy:
    - R2_PUBLIC_URL set (custom domain or r2.dev): ``{public_url}/{key}``
    - otherwise: presigned GET URL valid for 24 hours

Usage:
    publisher = R2Publisher(get_r2_settings())
    url = await publisher.publish(Path("/tmp/songreel/<job>/output.mp4"), "videos/<job>.mp4")
"""

import asyncio
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from songreel.config import R2Settings
from songreel.exceptions import TransportError
from songreel.utils.logging import get_logger

log = get_logger(__name__)

PRESIGNED_URL_TTL_SECONDS = 24 * 60 * 60


class ArtifactPublisher(Protocol):
    async def publish(self, local_path: Path, key: str) -> str: ...


def video_key(job_id: object) -> str:
    return f"videos/{job_id}.mp4"


class R2Publisher:
    """Uploads artifacts to an R2 bucket and returns a fetchable URL."""

    provider_name = "r2"

    def __init__(self, settings: R2Settings, s3_client: Any | None = None):
        self.settings = settings
        self.s3 = s3_client or boto3.client(
            "s3",
            endpoint_url=settings.endpoint_url,
            aws_access_key_id=settings.access_key_id,
            aws_secret_access_key=settings.secret_access_key,
            region_name="auto",
            config=Config(signature_version="s3v4", retries={"max_attempts": 3, "mode": "standard"}),
        )

    async def publish(self, local_path: Path, key: str) -> str:
        """Upload ``local_path`` as ``key``.

        Raises:
            FileNotFoundError: If the artifact is missing locally.
            TransportError: If the upload or presign call fails.
        """
        if not local_path.exists():
            raise FileNotFoundError(f"Artifact not found: {local_path}")

        try:
            await asyncio.to_thread(
                self.s3.upload_file,
                str(local_path),
                self.settings.bucket_name,
                key,
                ExtraArgs={"ContentType": "video/mp4"},
            )
        except (BotoCoreError, ClientError) as e:
            raise TransportError(f"R2 upload failed: {e}", provider=self.provider_name) from e

        log.info(
            "artifact_published",
            bucket=self.settings.bucket_name,
            key=key,
            size_bytes=local_path.stat().st_size,
        )
        return await self.url_for(key)

    async def url_for(self, key: str) -> str:
        if self.settings.public_url:
            return f"{self.settings.public_url}/{key}"

        try:
            return await asyncio.to_thread(
                self.s3.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.settings.bucket_name, "Key": key},
                ExpiresIn=PRESIGNED_URL_TTL_SECONDS,
            )
        except (BotoCoreError, ClientError) as e:
            raise TransportError(f"R2 presign failed: {e}", provider=self.provider_name) from e
