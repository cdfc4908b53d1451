"""Avatar storage on S3.

Uploads go straight from the browser to S3 through presigned PUT URLs; the
user record only keeps the object key. Reads are served through short-lived
presigned GET URLs.

S3 key structure: avatars/{user_id}/{uuid}
"""

import asyncio
import uuid
from dataclasses import dataclass

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from saaskit.core.config import get_settings
from saaskit.core.exceptions import StorageNotConfiguredError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class UploadTarget:
    url: str
    key: str


class AvatarStorage:
    """Presigned-URL access to the avatars bucket."""

    def __init__(self, bucket: str | None = None, region: str | None = None, client=None):
        settings = get_settings()
        self.bucket = bucket if bucket is not None else settings.avatars_bucket
        self.region = region or settings.avatars_region
        self.url_ttl = settings.avatars_url_ttl_seconds
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("s3", region_name=self.region)
        return self._client

    def _require_bucket(self) -> str:
        if not self.bucket:
            raise StorageNotConfiguredError()
        return self.bucket

    @staticmethod
    def owns_key(user_id: uuid.UUID | str, key: str) -> bool:
        return key.startswith(f"avatars/{user_id}/")

    def generate_upload_url(self, user_id: uuid.UUID | str) -> UploadTarget:
        """Return a presigned PUT URL and the key the object will live under."""
        bucket = self._require_bucket()
        key = f"avatars/{user_id}/{uuid.uuid4().hex}"
        url = self.client.generate_presigned_url(
            "put_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=self.url_ttl,
        )
        return UploadTarget(url=url, key=key)

    def get_url(self, key: str | None) -> str | None:
        """Presigned GET URL for a stored avatar, or None when unavailable."""
        if not key or not self.bucket:
            return None
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=self.url_ttl,
        )

    async def delete(self, key: str | None) -> None:
        """Best-effort removal of a replaced or cleared avatar object."""
        if not key or not self.bucket:
            return
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            logger.warning("avatar_delete_failed", key=key, error=str(exc), error_type=type(exc).__name__)


_storage: AvatarStorage | None = None


def get_avatar_storage() -> AvatarStorage:
    global _storage
    if _storage is None:
        _storage = AvatarStorage()
    return _storage
