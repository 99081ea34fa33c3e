from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .base_repo import BaseRepository, command_row_count

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, title, description, image_url, variant_image_urls, thumbnail_url, prompt,
    categories, metadata, is_active, is_premium, usage_count, average_rating,
    website_url, face_count, slots, created_at, updated_at, created_by
"""

# column -> how to bind it
_UPDATABLE = {
    "title": "text",
    "description": "text",
    "image_url": "text",
    "variant_image_urls": "jsonb",
    "thumbnail_url": "text",
    "prompt": "text",
    "categories": "text[]",
    "metadata": "jsonb",
    "is_active": "boolean",
    "is_premium": "boolean",
    "website_url": "text",
    "face_count": "int",
    "slots": "jsonb",
}


class TemplatesRepo(BaseRepository):
    async def list_all(self) -> List[Dict[str, Any]]:
        rows = await self.execute_queries(f"SELECT {_COLUMNS} FROM templates ORDER BY created_at DESC")
        return self.convert_db_rows(rows)

    async def list_active(self) -> List[Dict[str, Any]]:
        rows = await self.execute_queries(
            f"SELECT {_COLUMNS} FROM templates WHERE is_active = true ORDER BY created_at DESC"
        )
        return self.convert_db_rows(rows)

    async def get(self, template_id: str) -> Optional[Dict[str, Any]]:
        row = await self.execute_query(f"SELECT {_COLUMNS} FROM templates WHERE id = $1::uuid", template_id)
        return self.convert_db_row(row) or None

    async def new_id(self) -> str:
        return str(await self.fetch_scalar("SELECT gen_random_uuid()::text"))

    async def create(self, template_id: str, fields: Dict[str, Any], created_by: Optional[str]) -> Dict[str, Any]:
        row = await self.execute_query(
            f"""
            INSERT INTO templates (
                id, title, description, image_url, variant_image_urls, prompt,
                categories, metadata, is_active, is_premium, usage_count,
                website_url, face_count, slots, created_at, updated_at, created_by
            )
            VALUES (
                $1::uuid, $2, $3, $4, $5::jsonb, $6,
                $7::text[], $8::jsonb, $9, $10, 0,
                $11, $12, $13::jsonb, now(), now(), $14
            )
            RETURNING {_COLUMNS}
            """,
            template_id,
            fields["title"],
            fields["description"],
            fields["image_url"],
            self.prepare_jsonb_param(fields.get("variant_image_urls") or []),
            fields["prompt"],
            list(fields.get("categories") or []),
            self.prepare_jsonb_param(fields.get("metadata") or {}),
            bool(fields.get("is_active", True)),
            bool(fields.get("is_premium", False)),
            fields.get("website_url"),
            int(fields.get("face_count") or 1),
            self.prepare_jsonb_param(fields.get("slots") or []),
            created_by,
        )
        return self.convert_db_row(row)

    async def update(self, template_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Partial update of the given columns; unknown keys are ignored."""
        sets: List[str] = []
        params: List[Any] = [template_id]
        for column, value in fields.items():
            kind = _UPDATABLE.get(column)
            if kind is None:
                continue
            if kind == "jsonb":
                value = self.prepare_jsonb_param(value)
            elif kind == "text[]":
                value = list(value or [])
            params.append(value)
            sets.append(f"{column} = ${len(params)}::{kind}")

        if not sets:
            return await self.get(template_id)

        row = await self.execute_query(
            f"""
            UPDATE templates SET {", ".join(sets)}, updated_at = now()
            WHERE id = $1::uuid
            RETURNING {_COLUMNS}
            """,
            *params,
        )
        return self.convert_db_row(row) or None

    async def delete(self, template_id: str) -> bool:
        status = await self.execute_command("DELETE FROM templates WHERE id = $1::uuid", template_id)
        return command_row_count(status) == 1

    async def increment_usage(self, template_id: str) -> None:
        # single-statement increment; the counter only ever goes up
        await self.execute_command(
            "UPDATE templates SET usage_count = usage_count + 1 WHERE id = $1::uuid",
            template_id,
        )
