"""Durable re-hosting of generated media in Supabase Storage."""

from __future__ import annotations

import logging
from uuid import uuid4

from supabase import Client

from .errors import StorageError
from .media import extension_for

logger = logging.getLogger(__name__)


def object_key(project_id: str, scene_number: int, content_type: str | None) -> str:
    """Collision-resistant object key for one scene asset."""

    return f"{project_id}/scene-{scene_number}-{uuid4().hex}.{extension_for(content_type)}"


class MediaStorage:
    def __init__(self, client: Client, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    def upload(self, key: str, content: bytes, content_type: str) -> str:
        """Upload ``content`` under ``key`` and return its public URL."""

        bucket = self.client.storage.from_(self.bucket)
        try:
            bucket.upload(
                key,
                content,
                {"content-type": content_type, "cache-control": "3600", "upsert": "false"},
            )
            public_url = bucket.get_public_url(key)
        except Exception as exc:
            logger.exception("Upload of %s to bucket %s failed", key, self.bucket)
            raise StorageError(f"Upload failed for {key}: {exc}") from exc
        logger.info("Uploaded %d bytes to %s/%s", len(content), self.bucket, key)
        return public_url.rstrip("?")
