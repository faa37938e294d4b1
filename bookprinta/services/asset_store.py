# FILE: bookprinta/services/asset_store.py
import asyncio
import io
import logging
from typing import Optional

import cloudinary.exceptions
import cloudinary.uploader

from bookprinta.core.config import (
    CLOUDINARY_CLOUD_NAME,
    CLOUDINARY_API_KEY,
    CLOUDINARY_API_SECRET,
)
from bookprinta.core.errors import ProviderError, ServiceUnavailableError

logger = logging.getLogger("bookprinta.assets")

ALLOWED_MIME_TYPES = {"application/pdf", "image/jpeg", "image/png"}
MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024


class AssetStore:
    """Cloudinary uploads. The SDK is blocking, so uploads run in a worker thread."""

    def __init__(
        self,
        cloud_name: str = CLOUDINARY_CLOUD_NAME,
        api_key: str = CLOUDINARY_API_KEY,
        api_secret: str = CLOUDINARY_API_SECRET,
    ):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.is_available = bool(cloud_name and api_key and api_secret)

    @staticmethod
    def is_allowed_mime_type(mime: Optional[str]) -> bool:
        return (mime or "").lower() in ALLOWED_MIME_TYPES

    @staticmethod
    def is_within_size_limit(size: int) -> bool:
        return 0 < size <= MAX_FILE_SIZE_BYTES

    async def upload(
        self,
        buffer: bytes,
        *,
        folder: str,
        resource_type: str = "auto",
        public_id: Optional[str] = None,
    ) -> str:
        if not self.is_available:
            raise ServiceUnavailableError("File storage is not configured.")

        def _call():
            return cloudinary.uploader.upload(
                io.BytesIO(buffer),
                folder=folder,
                resource_type=resource_type,
                public_id=public_id,
                cloud_name=self.cloud_name,
                api_key=self.api_key,
                api_secret=self.api_secret,
                secure=True,
            )

        try:
            result = await asyncio.to_thread(_call)
        except cloudinary.exceptions.Error as e:
            logger.error("Cloudinary upload to %s failed: %s", folder, e)
            raise ProviderError("Receipt upload failed") from e

        logger.info("Uploaded asset %s", result.get("public_id"))
        return result["secure_url"]
