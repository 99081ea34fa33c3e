from __future__ import annotations

from typing import Any, Dict, List, Optional

from .base_repo import BaseRepository, command_row_count

_COLUMNS = """
    id, name, domain, logo, favicon, theme_id, custom_colors, is_active, created_at, updated_at
"""


class BrandConfigsRepo(BaseRepository):
    async def list_all(self) -> List[Dict[str, Any]]:
        rows = await self.execute_queries(f"SELECT {_COLUMNS} FROM brand_configs ORDER BY name ASC")
        return self.convert_db_rows(rows)

    async def find_active_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        row = await self.execute_query(
            f"SELECT {_COLUMNS} FROM brand_configs WHERE lower(name) = lower($1) AND is_active = true LIMIT 1",
            name,
        )
        return self.convert_db_row(row) or None

    async def find_by_domain(self, domain: str) -> Optional[Dict[str, Any]]:
        row = await self.execute_query(f"SELECT {_COLUMNS} FROM brand_configs WHERE domain = $1 LIMIT 1", domain)
        return self.convert_db_row(row) or None

    async def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        row = await self.execute_query(
            f"""
            INSERT INTO brand_configs (
                name, domain, logo, favicon, theme_id, custom_colors, is_active, created_at, updated_at
            )
            VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, now(), now())
            RETURNING {_COLUMNS}
            """,
            fields["name"],
            fields["domain"],
            fields.get("logo"),
            fields.get("favicon"),
            fields.get("theme_id"),
            self.prepare_jsonb_param(fields.get("custom_colors") or {}),
            bool(fields.get("is_active", True)),
        )
        return self.convert_db_row(row)

    async def update(self, brand_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        row = await self.execute_query(
            f"""
            UPDATE brand_configs
            SET name = $2, domain = $3, logo = $4, favicon = $5, theme_id = $6,
                custom_colors = $7::jsonb, is_active = $8, updated_at = now()
            WHERE id = $1::uuid
            RETURNING {_COLUMNS}
            """,
            brand_id,
            fields["name"],
            fields["domain"],
            fields.get("logo"),
            fields.get("favicon"),
            fields.get("theme_id"),
            self.prepare_jsonb_param(fields.get("custom_colors") or {}),
            bool(fields.get("is_active", True)),
        )
        return self.convert_db_row(row) or None

    async def delete(self, brand_id: str) -> bool:
        status = await self.execute_command("DELETE FROM brand_configs WHERE id = $1::uuid", brand_id)
        return command_row_count(status) == 1
