from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import asyncpg

logger = logging.getLogger(__name__)


def coerce_json_value(value: Any, *, default: Any) -> Any:
    """
    DB 'json-ish' values -> real Python objects.

    dict/list pass through, JSON strings are parsed, None and blanks give
    `default`. Anything unparseable keeps the shape of `default`.
    """
    if value is None:
        return default
    if isinstance(value, (dict, list, int, float, bool)):
        return value
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return default
        try:
            return json.loads(s)
        except ValueError:
            pass
        if isinstance(default, list):
            return [p.strip() for p in s.split(",") if p.strip()]
        if isinstance(default, dict):
            return {"raw": s}
        return s
    return default


class BaseRepository:
    """
    Base repository with safe row conversion.

    convert_db_row() never throws on a field mismatch; it keeps the raw value
    and logs instead.
    """

    UUID_FIELDS = {"id", "transaction_id", "face_swap_id", "template_id"}
    JSON_DICT_FIELDS = {"metadata", "translations", "custom_colors"}
    JSON_LIST_FIELDS = {"used_templates", "slots", "variant_image_urls"}
    TEXT_ARRAY_FIELDS = {
        "categories",
        "option_keys",
        "preferred_body_type",
        "preferred_occasions",
        "preferred_mood",
        "preferred_style",
        "viewed_templates",
        "favorite_templates",
        "answered_questions",
    }

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    def convert_db_row(self, row: Optional[asyncpg.Record]) -> Dict[str, Any]:
        if not row:
            return {}

        converted: Dict[str, Any] = {}
        for field_name, field_value in dict(row).items():
            try:
                if field_name in self.UUID_FIELDS:
                    converted[field_name] = None if field_value is None else str(field_value)
                elif field_name in self.JSON_LIST_FIELDS:
                    converted[field_name] = coerce_json_value(field_value, default=[])
                elif field_name in self.JSON_DICT_FIELDS:
                    converted[field_name] = coerce_json_value(field_value, default={})
                elif field_name in self.TEXT_ARRAY_FIELDS:
                    converted[field_name] = list(field_value or [])
                else:
                    converted[field_name] = field_value
            except Exception as e:
                logger.warning(
                    "convert_db_row field conversion failed",
                    extra={"field": field_name, "error": str(e), "type": str(type(field_value))},
                )
                converted[field_name] = field_value
        return converted

    def convert_db_rows(self, rows: Sequence[asyncpg.Record]) -> List[Dict[str, Any]]:
        return [self.convert_db_row(row) for row in rows]

    async def execute_query(self, query: str, *params) -> Optional[asyncpg.Record]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchrow(query, *params)
        except Exception as e:
            logger.error("Query failed", extra={"query": query, "error": str(e)})
            raise

    async def execute_queries(self, query: str, *params) -> List[asyncpg.Record]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetch(query, *params)
        except Exception as e:
            logger.error("Multi-query failed", extra={"query": query, "error": str(e)})
            raise

    async def execute_command(self, command: str, *params) -> str:
        try:
            async with self.pool.acquire() as conn:
                return await conn.execute(command, *params)
        except Exception as e:
            logger.error("Command failed", extra={"command": command, "error": str(e)})
            raise

    async def fetch_scalar(self, query: str, *params) -> Any:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval(query, *params)
        except Exception as e:
            logger.error("Scalar query failed", extra={"query": query, "error": str(e)})
            raise

    def prepare_jsonb_param(self, value: Any) -> str:
        """JSON string that is always valid for `$n::jsonb`."""
        if value is None:
            return json.dumps({})
        if isinstance(value, str):
            try:
                return json.dumps(json.loads(value), default=str)
            except ValueError:
                return json.dumps({"raw": value})
        return json.dumps(value, default=str)


def command_row_count(status: str) -> int:
    """asyncpg status string 'UPDATE 3' -> 3."""
    try:
        return int((status or "").rsplit(" ", 1)[-1])
    except ValueError:
        return 0
