from __future__ import annotations

from typing import Any, Dict, List, Optional

import asyncpg

from .base_repo import BaseRepository

_COLUMNS = """
    id, user_id, type, credits, balance_before, balance_after,
    description, metadata, face_swap_id, created_at
"""


class CreditTransactionsRepo(BaseRepository):
    """Append-only ledger: rows are never updated or deleted."""

    async def insert(
        self,
        conn: asyncpg.Connection,
        *,
        user_id: str,
        type: str,
        credits: int,
        balance_before: int,
        balance_after: int,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        face_swap_id: Optional[str] = None,
    ) -> str:
        if balance_after != balance_before + credits:
            raise ValueError("ledger entry does not balance")

        tx_id = await conn.fetchval(
            """
            INSERT INTO credit_transactions (
                user_id, type, credits, balance_before, balance_after,
                description, metadata, face_swap_id, created_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8::uuid, now())
            RETURNING id::text
            """,
            user_id,
            type,
            credits,
            balance_before,
            balance_after,
            description,
            self.prepare_jsonb_param(metadata or {}),
            face_swap_id,
        )
        return str(tx_id)

    async def link_face_swap(self, conn: asyncpg.Connection, transaction_id: str, face_swap_id: str) -> None:
        # face_swap_id is only known after the swap row exists in the same transaction
        await conn.execute(
            "UPDATE credit_transactions SET face_swap_id = $2::uuid WHERE id = $1::uuid AND face_swap_id IS NULL",
            transaction_id,
            face_swap_id,
        )

    async def list_for_user(
        self,
        user_id: str,
        *,
        limit: int = 50,
        start_after: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        if start_after:
            rows = await self.execute_queries(
                f"""
                SELECT {_COLUMNS} FROM credit_transactions
                WHERE user_id = $1
                  AND (created_at, id) < (
                      SELECT created_at, id FROM credit_transactions WHERE id = $3::uuid AND user_id = $1
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
                SELECT {_COLUMNS} FROM credit_transactions
                WHERE user_id = $1
                ORDER BY created_at DESC, id DESC
                LIMIT $2
                """,
                user_id,
                limit,
            )
        return self.convert_db_rows(rows)
