from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .base_repo import BaseRepository

_COLUMNS = """
    user_id, preferred_body_type, preferred_occasions, preferred_mood, preferred_style,
    viewed_templates, used_templates, favorite_templates, answered_questions,
    created_at, updated_at
"""

PREFERENCE_COLUMNS = (
    "preferred_body_type",
    "preferred_occasions",
    "preferred_mood",
    "preferred_style",
)

# Ensures a row exists before an array append; profiles are created lazily.
_ENSURE = """
INSERT INTO user_profiles (user_id, created_at, updated_at)
VALUES ($1, now(), now())
ON CONFLICT (user_id) DO NOTHING
"""


def _union_sql(column: str, param: int) -> str:
    return (
        f"{column} = ARRAY(SELECT DISTINCT x FROM unnest("
        f"COALESCE(user_profiles.{column}, '{{}}'::text[]) || ${param}::text[]) AS x)"
    )


class UserProfilesRepo(BaseRepository):
    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        row = await self.execute_query(f"SELECT {_COLUMNS} FROM user_profiles WHERE user_id = $1", user_id)
        return self.convert_db_row(row) or None

    async def upsert_preferences(self, user_id: str, preferences: Dict[str, List[str]]) -> Dict[str, Any]:
        """Replace the given preference arrays, creating the profile if needed."""
        cols = [c for c in PREFERENCE_COLUMNS if c in preferences]
        params: List[Any] = [user_id] + [list(preferences[c]) for c in cols]
        insert_cols = ", ".join(["user_id"] + cols + ["created_at", "updated_at"])
        insert_vals = ", ".join(["$1"] + [f"${i + 2}::text[]" for i in range(len(cols))] + ["now()", "now()"])
        updates = ", ".join([f"{c} = EXCLUDED.{c}" for c in cols] + ["updated_at = now()"])

        row = await self.execute_query(
            f"""
            INSERT INTO user_profiles ({insert_cols})
            VALUES ({insert_vals})
            ON CONFLICT (user_id) DO UPDATE SET {updates}
            RETURNING {_COLUMNS}
            """,
            *params,
        )
        return self.convert_db_row(row)

    async def record_screener_answers(
        self,
        user_id: str,
        question_ids: List[str],
        preference_values: Dict[str, List[str]],
    ) -> Dict[str, Any]:
        """Set-union of answered question ids and of each touched preference array."""
        params: List[Any] = [user_id, list(question_ids)]
        sets = [_union_sql("answered_questions", 2)]
        for column in PREFERENCE_COLUMNS:
            values = preference_values.get(column)
            if values:
                params.append(list(values))
                sets.append(_union_sql(column, len(params)))

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(_ENSURE, user_id)
                row = await conn.fetchrow(
                    f"""
                    UPDATE user_profiles SET {", ".join(sets)}, updated_at = now()
                    WHERE user_id = $1
                    RETURNING {_COLUMNS}
                    """,
                    *params,
                )
        return self.convert_db_row(row)

    async def append_used_template(self, user_id: str, template_id: str, at: Optional[datetime] = None) -> None:
        entry = {"templateId": template_id, "timestamp": (at or datetime.now(timezone.utc)).isoformat()}
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(_ENSURE, user_id)
                await conn.execute(
                    """
                    UPDATE user_profiles
                    SET used_templates = COALESCE(used_templates, '[]'::jsonb) || jsonb_build_array($2::jsonb),
                        updated_at = now()
                    WHERE user_id = $1
                    """,
                    user_id,
                    json.dumps(entry),
                )

    async def _add_to_array(self, user_id: str, column: str, value: str) -> None:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(_ENSURE, user_id)
                await conn.execute(
                    f"UPDATE user_profiles SET {_union_sql(column, 2)}, updated_at = now() WHERE user_id = $1",
                    user_id,
                    [value],
                )

    async def add_viewed_template(self, user_id: str, template_id: str) -> None:
        await self._add_to_array(user_id, "viewed_templates", template_id)

    async def add_favorite(self, user_id: str, template_id: str) -> None:
        await self._add_to_array(user_id, "favorite_templates", template_id)

    async def remove_favorite(self, user_id: str, template_id: str) -> None:
        await self.execute_command(
            """
            UPDATE user_profiles
            SET favorite_templates = array_remove(favorite_templates, $2), updated_at = now()
            WHERE user_id = $1
            """,
            user_id,
            template_id,
        )
