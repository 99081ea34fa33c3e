from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import asyncpg

from .base_repo import BaseRepository, command_row_count

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, user_id, status, style, template_id, template_title, credits_used,
    transaction_id, result_image_url, error_message, is_guest_transfer, created_at, completed_at
"""


class FaceSwapsRepo(BaseRepository):
    """
    face_swaps lifecycle: processing -> completed | failed.
    Terminal updates are guarded by `status = 'processing'` so a record never
    moves backwards.
    """

    async def insert_processing(
        self,
        conn: asyncpg.Connection,
        *,
        user_id: str,
        style: str,
        credits_used: int,
        transaction_id: str,
        template_id: Optional[str] = None,
        template_title: Optional[str] = None,
    ) -> str:
        swap_id = await conn.fetchval(
            """
            INSERT INTO face_swaps (
                user_id, status, style, template_id, template_title,
                credits_used, transaction_id, created_at
            )
            VALUES ($1, 'processing', $2, $3, $4, $5, $6::uuid, now())
            RETURNING id::text
            """,
            user_id,
            style,
            template_id,
            template_title,
            credits_used,
            transaction_id,
        )
        return str(swap_id)

    async def mark_completed(self, face_swap_id: str, result_image_url: Optional[str]) -> bool:
        status = await self.execute_command(
            """
            UPDATE face_swaps
            SET status = 'completed', result_image_url = $2, completed_at = now()
            WHERE id = $1::uuid AND status = 'processing'
            """,
            face_swap_id,
            result_image_url,
        )
        return command_row_count(status) == 1

    async def mark_failed(self, conn: asyncpg.Connection, face_swap_id: str, error_message: str) -> bool:
        status = await conn.execute(
            """
            UPDATE face_swaps
            SET status = 'failed', error_message = $2, completed_at = now()
            WHERE id = $1::uuid AND status = 'processing'
            """,
            face_swap_id,
            (error_message or "")[:1000],
        )
        return command_row_count(status) == 1

    async def new_id(self) -> str:
        return str(await self.fetch_scalar("SELECT gen_random_uuid()::text"))

    async def insert_transferred(
        self,
        face_swap_id: str,
        *,
        user_id: str,
        style: str,
        template_title: Optional[str],
        result_image_url: Optional[str],
        created_at: Optional[datetime] = None,
    ) -> str:
        """A completed guest trial swap adopted into a user's history; no credits or transaction."""
        swap_id = await self.fetch_scalar(
            """
            INSERT INTO face_swaps (
                id, user_id, status, style, template_title, credits_used,
                result_image_url, is_guest_transfer, created_at, completed_at
            )
            VALUES ($1::uuid, $2, 'completed', $3, $4, 0, $5, true, COALESCE($6::timestamptz, now()), now())
            RETURNING id::text
            """,
            face_swap_id,
            user_id,
            style,
            template_title,
            result_image_url,
            created_at,
        )
        return str(swap_id)

    async def get(self, face_swap_id: str) -> Optional[Dict[str, Any]]:
        row = await self.execute_query(f"SELECT {_COLUMNS} FROM face_swaps WHERE id = $1::uuid", face_swap_id)
        return self.convert_db_row(row) or None

    async def list_completed_for_user(
        self,
        user_id: str,
        *,
        limit: int = 20,
        start_after: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """History: completed swaps that have a stored result."""
        if start_after:
            rows = await self.execute_queries(
                f"""
                SELECT {_COLUMNS} FROM face_swaps
                WHERE user_id = $1 AND status = 'completed' AND result_image_url IS NOT NULL
                  AND (created_at, id) < (
                      SELECT created_at, id FROM face_swaps WHERE id = $3::uuid AND user_id = $1
                  )
                ORDER BY created_at DESC, id DESC
                LIMIT $2
                """,
                user_id,
                limit,
                start_after,
            )
        else:
            rows = await self.execute_queries(
                f"""
                SELECT {_COLUMNS} FROM face_swaps
                WHERE user_id = $1 AND status = 'completed' AND result_image_url IS NOT NULL
                ORDER BY created_at DESC, id DESC
                LIMIT $2
                """,
                user_id,
                limit,
            )
        return self.convert_db_rows(rows)
