from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .base_repo import BaseRepository, command_row_count

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, face_swap_id, user_id, image_url, thumbnail_url, template_title, style,
    display_name, caption, likes, views, liked_by, is_public, is_moderated,
    is_featured, published_at, created_at, updated_at
"""


class GalleryRepo(BaseRepository):
    """
    Public gallery: at most one item per face swap (unique face_swap_id).
    Likes and liked_by change together in one statement.
    """

    async def publish(
        self,
        *,
        face_swap: Dict[str, Any],
        display_name: str,
        caption: Optional[str],
    ) -> str:
        # republishing keeps the image, counters and published_at of the first publish
        item_id = await self.fetch_scalar(
            """
            INSERT INTO gallery_items (
                face_swap_id, user_id, image_url, template_title, style,
                display_name, caption, likes, views, liked_by,
                is_public, is_moderated, is_featured, published_at, created_at, updated_at
            )
            VALUES (
                $1::uuid, $2, $3, $4, $5, $6, $7, 0, 0, '{}',
                true, false, false, now(), COALESCE($8::timestamptz, now()), now()
            )
            ON CONFLICT (face_swap_id) DO UPDATE
            SET is_public = true, display_name = EXCLUDED.display_name,
                caption = EXCLUDED.caption, updated_at = now()
            RETURNING id::text
            """,
            face_swap["id"],
            face_swap["user_id"],
            face_swap.get("result_image_url") or "",
            face_swap.get("template_title"),
            face_swap.get("style"),
            display_name,
            caption,
            face_swap.get("created_at"),
        )
        return str(item_id)

    async def unpublish(self, face_swap_id: str) -> bool:
        status = await self.execute_command(
            "UPDATE gallery_items SET is_public = false, updated_at = now() WHERE face_swap_id = $1::uuid",
            face_swap_id,
        )
        return command_row_count(status) == 1

    async def list_public(
        self,
        *,
        style: Optional[str] = None,
        template_title: Optional[str] = None,
        featured_only: bool = False,
        max_rows: int = 500,
    ) -> List[Dict[str, Any]]:
        """Newest public items matching the filters; sorting beyond recency happens in the caller."""
        rows = await self.execute_queries(
            f"""
            SELECT {_COLUMNS} FROM gallery_items
            WHERE is_public = true
              AND ($1::text IS NULL OR style = $1)
              AND ($2::text IS NULL OR template_title = $2)
              AND (NOT $3 OR is_featured = true)
            ORDER BY published_at DESC, id DESC
            LIMIT $4
            """,
            style,
            template_title,
            featured_only,
            max_rows,
        )
        return self.convert_db_rows(rows)

    async def exists(self, item_id: str) -> bool:
        return bool(await self.fetch_scalar("SELECT EXISTS(SELECT 1 FROM gallery_items WHERE id = $1::uuid)", item_id))

    async def like(self, item_id: str, liker: str) -> bool:
        """False when the liker had already liked the item (or it does not exist)."""
        status = await self.execute_command(
            """
            UPDATE gallery_items
            SET likes = likes + 1, liked_by = array_append(liked_by, $2), updated_at = now()
            WHERE id = $1::uuid AND NOT ($2 = ANY(liked_by))
            """,
            item_id,
            liker,
        )
        return command_row_count(status) == 1

    async def unlike(self, item_id: str, liker: str) -> bool:
        status = await self.execute_command(
            """
            UPDATE gallery_items
            SET likes = GREATEST(likes - 1, 0), liked_by = array_remove(liked_by, $2), updated_at = now()
            WHERE id = $1::uuid AND $2 = ANY(liked_by)
            """,
            item_id,
            liker,
        )
        return command_row_count(status) == 1
