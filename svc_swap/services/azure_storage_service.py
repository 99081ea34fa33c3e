from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
)

from svc_swap.config import settings
from svc_swap.services import image_io

logger = logging.getLogger(__name__)


def _ext_for_content_type(content_type: str) -> str:
    ct = (content_type or "").lower().split(";")[0].strip()
    if ct == "image/png":
        return "png"
    if ct == "image/webp":
        return "webp"
    if ct in ("image/jpg", "image/jpeg"):
        return "jpg"
    return "png"


def _parse_connection_string(conn: str) -> Dict[str, str]:
    return dict(item.split("=", 1) for item in (conn or "").split(";") if "=" in item)


class AzureStorageService:
    """Blob storage for swap results, templates, brand assets and temp staging."""

    def __init__(self, connection_string: Optional[str] = None):
        self.connection_string = connection_string or settings.AZURE_STORAGE_CONNECTION_STRING
        self._blob_service: Optional[BlobServiceClient] = None

    @property
    def configured(self) -> bool:
        return bool(self.connection_string)

    @property
    def blob_service(self) -> BlobServiceClient:
        if self._blob_service is None:
            if not self.connection_string:
                raise RuntimeError("AZURE_STORAGE_CONNECTION_STRING is not set")
            self._blob_service = BlobServiceClient.from_connection_string(self.connection_string)
        return self._blob_service

    def _generate_sas_url(self, container: str, blob_name: str, hours: Optional[int] = None) -> str:
        parts = _parse_connection_string(self.connection_string)
        account_name = parts.get("AccountName")
        account_key = parts.get("AccountKey")
        if not account_name or not account_key:
            raise RuntimeError("Could not parse storage account credentials")

        sas_token = generate_blob_sas(
            account_name=account_name,
            container_name=container,
            blob_name=blob_name,
            account_key=account_key,
            permission=BlobSasPermissions(read=True),
            expiry=datetime.now(timezone.utc) + timedelta(hours=hours or settings.SAS_HOURS),
        )
        return f"https://{account_name}.blob.core.windows.net/{container}/{blob_name}?{sas_token}"

    def _upload_sync(self, container: str, blob_name: str, data: bytes, content_type: str) -> None:
        blob_client = self.blob_service.get_blob_client(container=container, blob=blob_name)
        blob_client.upload_blob(
            data,
            overwrite=True,
            content_settings=ContentSettings(content_type=content_type),
        )

    async def upload_bytes(
        self,
        *,
        container: str,
        blob_name: str,
        data: bytes,
        content_type: str,
    ) -> Tuple[str, str]:
        """Returns (blob_name, read-only SAS url)."""
        await asyncio.to_thread(self._upload_sync, container, blob_name, data, content_type)
        return blob_name, self._generate_sas_url(container, blob_name)

    async def upload_data_url(self, *, container: str, blob_stem: str, data_url: str) -> Tuple[str, str]:
        data, content_type = image_io.decode_data_url(data_url)
        blob_name = f"{blob_stem}.{_ext_for_content_type(content_type)}"
        return await self.upload_bytes(container=container, blob_name=blob_name, data=data, content_type=content_type)

    async def upload_image(self, *, container: str, blob_stem: str, image: str) -> Tuple[str, str]:
        """Data URL or remote URL -> stored copy in our container."""
        if image_io.is_remote_url(image):
            data, content_type = await image_io.fetch_bytes(image)
            blob_name = f"{blob_stem}.{_ext_for_content_type(content_type)}"
            return await self.upload_bytes(container=container, blob_name=blob_name, data=data, content_type=content_type)
        return await self.upload_data_url(container=container, blob_stem=blob_stem, data_url=image)

    # ------------------------------------------------------------------
    # Read signing
    # ------------------------------------------------------------------

    def sign_read_url(self, storage_ref: Optional[str], hours: Optional[int] = None) -> Optional[str]:
        """
        Stored "container/blob" reference -> fresh read-only SAS url.

        Full URLs (remote images, data URLs) come back unchanged, as does
        everything when storage is not configured.
        """
        if not storage_ref:
            return None
        if not self.configured or storage_ref.startswith(("http://", "https://", "data:")):
            return storage_ref
        container, _, blob_name = storage_ref.lstrip("/").partition("/")
        if not container or not blob_name:
            return storage_ref
        return self._generate_sas_url(container, blob_name, hours=hours)

    # ------------------------------------------------------------------
    # Domain helpers
    # ------------------------------------------------------------------

    async def upload_face_swap_result(self, data_url: str, user_id: str, face_swap_id: str) -> str:
        """Returns the storage ref; callers sign it on read."""
        container = settings.SWAP_OUTPUT_CONTAINER
        blob_name, _ = await self.upload_data_url(
            container=container,
            blob_stem=f"faceSwaps/{user_id}/{face_swap_id}",
            data_url=data_url,
        )
        return f"{container}/{blob_name}"

    async def upload_temp_image(self, image: str, prefix: str) -> str:
        """Stage an inline image so URL-only providers can fetch it. Remote URLs pass through."""
        if image_io.is_remote_url(image):
            return image
        _, url = await self.upload_data_url(
            container=settings.TEMP_UPLOAD_CONTAINER,
            blob_stem=f"{prefix}/{uuid.uuid4().hex}",
            data_url=image,
        )
        return url

    async def upload_template_image(self, template_id: str, image: str, variant: Optional[int] = None) -> str:
        container = settings.TEMPLATE_CONTAINER
        stem = f"{template_id}/main" if variant is None else f"{template_id}/variant_{variant}"
        blob_name, _ = await self.upload_image(container=container, blob_stem=stem, image=image)
        return f"{container}/{blob_name}"

    async def upload_brand_asset(self, brand_id: str, kind: str, image: str) -> str:
        container = settings.BRAND_ASSETS_CONTAINER
        blob_name, _ = await self.upload_image(container=container, blob_stem=f"{brand_id}/{kind}", image=image)
        return f"{container}/{blob_name}"

    def _delete_prefix_sync(self, container: str, prefix: str) -> int:
        container_client = self.blob_service.get_container_client(container)
        deleted = 0
        for blob in container_client.list_blobs(name_starts_with=prefix):
            container_client.delete_blob(blob.name)
            deleted += 1
        return deleted

    async def delete_template_images(self, template_id: str) -> int:
        deleted = await asyncio.to_thread(self._delete_prefix_sync, settings.TEMPLATE_CONTAINER, f"{template_id}/")
        logger.info("template_images_deleted", extra={"template_id": template_id, "count": deleted})
        return deleted
