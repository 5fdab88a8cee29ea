"""Object store access for avatar uploads."""
from __future__ import annotations
import logging
from urllib.parse import quote

from ..exceptions import ObjectStoreError
from ..models import AvatarUpload
from .client import GatewayClient
from .exceptions import GatewayAPIError

logger = logging.getLogger(__name__)


class AvatarStorage:
    """Upload avatars under ``{bucket}/{account_id}/{filename}``.

    Paths are keyed by account id, so concurrent uploads for different
    accounts never collide. Re-uploads for the same account overwrite.
    """

    def __init__(self, client: GatewayClient, bucket: str = "avatars"):
        self.client = client
        self.bucket = bucket

    def object_path(self, account_id: str, filename: str) -> str:
        # Only the basename is kept; client-supplied directories are dropped
        name = filename.replace("\\", "/").rsplit("/", 1)[-1] or "avatar"
        return f"{account_id}/{name}"

    def upload(self, account_id: str, avatar: AvatarUpload) -> str:
        """Upload and return the public URL.

        Raises:
            ObjectStoreError: On any upload failure
        """
        path = self.object_path(account_id, avatar.filename)
        try:
            self.client.post(
                f"/storage/v1/object/{self.bucket}/{quote(path)}",
                data=avatar.content,
                headers={"Content-Type": avatar.content_type, "x-upsert": "true"},
            )
        except GatewayAPIError as exc:
            logger.warning("[storage] upload %s/%s failed: status=%s message=%s",
                           self.bucket, path, exc.status_code, exc.message)
            raise ObjectStoreError(f"Failed to upload avatar: {exc.message}") from exc
        return self.client.public_url(f"/storage/v1/object/public/{self.bucket}/{quote(path)}")
