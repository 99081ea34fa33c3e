from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import httpx
from PIL import Image, UnidentifiedImageError

from svc_swap.config import settings
from svc_swap.services import image_io

logger = logging.getLogger(__name__)

Size = Tuple[int, int]


class ReconcileError(RuntimeError):
    pass


@dataclass(frozen=True)
class ReconcileOutcome:
    image: str
    resized: bool
    original_size: Optional[Size] = None
    target_size: Optional[Size] = None


def _open(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        return img
    except (UnidentifiedImageError, OSError) as e:
        raise ReconcileError(f"unreadable image: {e}") from e


def measure(data: bytes) -> Size:
    with Image.open(io.BytesIO(data)) as img:
        return img.size


def resize_to(data: bytes, size: Size, *, quality: int) -> bytes:
    """Stretch-to-fill resize (no crop), re-encoded as JPEG."""
    img = _open(data)
    if img.mode not in ("RGB", "L"):
        # JPEG has no alpha; flatten onto white
        background = Image.new("RGB", img.size, (255, 255, 255))
        rgba = img.convert("RGBA")
        background.paste(rgba, mask=rgba.split()[-1])
        img = background
    resized = img.resize(size, Image.Resampling.LANCZOS)

    out = io.BytesIO()
    resized.save(out, format="JPEG", quality=quality)
    return out.getvalue()


class ImageReconciler:
    """Forces provider output to the template's exact pixel dimensions."""

    def __init__(
        self,
        *,
        quality: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.quality = quality or settings.RECONCILE_JPEG_QUALITY
        self._transport = transport

    async def measure_dimensions(self, image: str, client: Optional[httpx.AsyncClient] = None) -> Size:
        data, _ = await image_io.load_image_bytes(image, client=client)
        try:
            return await asyncio.to_thread(measure, data)
        except (UnidentifiedImageError, OSError) as e:
            raise ReconcileError(f"unreadable image: {e}") from e

    async def reconcile_to_template(self, result_image: str, template_image: str) -> ReconcileOutcome:
        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            target_size = await self.measure_dimensions(template_image, client)
            result_bytes, _ = await image_io.load_image_bytes(result_image, client=client)

        try:
            original_size = await asyncio.to_thread(measure, result_bytes)
        except (UnidentifiedImageError, OSError) as e:
            raise ReconcileError(f"unreadable image: {e}") from e

        if original_size == target_size:
            return ReconcileOutcome(
                image=result_image,
                resized=False,
                original_size=original_size,
                target_size=target_size,
            )

        logger.info(
            "reconcile_resizing",
            extra={
                "from_w": original_size[0],
                "from_h": original_size[1],
                "to_w": target_size[0],
                "to_h": target_size[1],
            },
        )
        jpeg = await asyncio.to_thread(resize_to, result_bytes, target_size, quality=self.quality)
        return ReconcileOutcome(
            image=image_io.to_data_url(jpeg, "image/jpeg"),
            resized=True,
            original_size=original_size,
            target_size=target_size,
        )

    async def reconcile_or_keep(self, result_image: str, template_image: str) -> ReconcileOutcome:
        """reconcile_to_template, keeping the unreconciled result if probing or resizing fails."""
        try:
            return await self.reconcile_to_template(result_image, template_image)
        except (ReconcileError, image_io.ImageFetchError) as e:
            logger.warning("reconcile_failed_keeping_original", extra={"error": str(e)})
            return ReconcileOutcome(image=result_image, resized=False)
