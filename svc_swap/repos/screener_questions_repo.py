from __future__ import annotations

from typing import Any, Dict, List, Optional

from .base_repo import BaseRepository, command_row_count

_COLUMNS = """
    id, "order", multi_select, category, option_keys, translations, is_active,
    target_gender, min_usage_count, created_by, created_at, updated_at
"""


class ScreenerQuestionsRepo(BaseRepository):
    async def list_ordered(self) -> List[Dict[str, Any]]:
        rows = await self.execute_queries(f'SELECT {_COLUMNS} FROM screener_questions ORDER BY "order" ASC, created_at ASC')
        return self.convert_db_rows(rows)

    async def categories_by_id(self, question_ids: List[str]) -> Dict[str, Optional[str]]:
        # answer keys may be dotted names rather than uuids
        rows = await self.execute_queries(
            "SELECT id::text AS id, category FROM screener_questions WHERE id::text = ANY($1::text[])",
            list(question_ids),
        )
        return {r["id"]: r["category"] for r in rows}

    async def create(self, fields: Dict[str, Any], created_by: Optional[str]) -> Dict[str, Any]:
        # new questions go last: order = max(order) + 1
        row = await self.execute_query(
            f"""
            INSERT INTO screener_questions (
                "order", multi_select, category, option_keys, translations, is_active,
                target_gender, min_usage_count, created_by, created_at, updated_at
            )
            SELECT COALESCE(MAX("order"), 0) + 1, $1, $2, $3::text[], $4::jsonb, $5, $6, $7, $8, now(), now()
            FROM screener_questions
            RETURNING {_COLUMNS}
            """,
            bool(fields.get("multi_select")),
            fields.get("category"),
            list(fields["option_keys"]),
            self.prepare_jsonb_param(fields["translations"]),
            bool(fields.get("is_active", True)),
            fields.get("target_gender"),
            fields.get("min_usage_count"),
            created_by,
        )
        return self.convert_db_row(row)

    async def replace(self, question_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        row = await self.execute_query(
            f"""
            UPDATE screener_questions
            SET multi_select = $2, category = $3, option_keys = $4::text[], translations = $5::jsonb,
                is_active = $6, target_gender = $7, min_usage_count = $8, updated_at = now()
            WHERE id = $1::uuid
            RETURNING {_COLUMNS}
            """,
            question_id,
            bool(fields.get("multi_select")),
            fields.get("category"),
            list(fields["option_keys"]),
            self.prepare_jsonb_param(fields["translations"]),
            bool(fields.get("is_active", True)),
            fields.get("target_gender"),
            fields.get("min_usage_count"),
        )
        return self.convert_db_row(row) or None

    async def patch(
        self,
        question_id: str,
        *,
        is_active: Optional[bool] = None,
        order: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        row = await self.execute_query(
            f"""
            UPDATE screener_questions
            SET is_active = COALESCE($2, is_active), "order" = COALESCE($3, "order"), updated_at = now()
            WHERE id = $1::uuid
            RETURNING {_COLUMNS}
            """,
            question_id,
            is_active,
            order,
        )
        return self.convert_db_row(row) or None

    async def delete(self, question_id: str) -> bool:
        status = await self.execute_command("DELETE FROM screener_questions WHERE id = $1::uuid", question_id)
        return command_row_count(status) == 1
