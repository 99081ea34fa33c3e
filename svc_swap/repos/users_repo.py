from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import asyncpg

from .base_repo import BaseRepository
from .credit_transactions_repo import CreditTransactionsRepo

logger = logging.getLogger(__name__)


class UsersRepo(BaseRepository):
    """Credit balance per user. Balance writes happen only inside ledger transactions."""

    async def lock_balance(self, conn: asyncpg.Connection, user_id: str) -> Optional[int]:
        """Row-locks the user for the rest of the transaction. None when the user does not exist."""
        return await conn.fetchval("SELECT credits FROM users WHERE id = $1 FOR UPDATE", user_id)

    async def set_balance(self, conn: asyncpg.Connection, user_id: str, credits: int) -> None:
        await conn.execute(
            "UPDATE users SET credits = $2, updated_at = now() WHERE id = $1",
            user_id,
            credits,
        )

    async def ensure_user_with_welcome_credits(
        self,
        user_id: str,
        email: Optional[str],
        welcome_credits: int,
        transactions: CreditTransactionsRepo,
    ) -> Dict[str, Any]:
        """
        Returns the user row, creating it with `welcome_credits` and a bonus
        ledger entry on first sight.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    INSERT INTO users (id, email, credits, created_at, updated_at)
                    VALUES ($1, $2, $3, now(), now())
                    ON CONFLICT (id) DO NOTHING
                    RETURNING id, email, credits, created_at, updated_at
                    """,
                    user_id,
                    email,
                    welcome_credits,
                )
                if row is not None:
                    await transactions.insert(
                        conn,
                        user_id=user_id,
                        type="bonus",
                        credits=welcome_credits,
                        balance_before=0,
                        balance_after=welcome_credits,
                        description="Welcome credits",
                    )
                    logger.info("user_created_with_welcome_credits", extra={"user_id": user_id, "credits": welcome_credits})
                    return self.convert_db_row(row)

                row = await conn.fetchrow(
                    "SELECT id, email, credits, created_at, updated_at FROM users WHERE id = $1",
                    user_id,
                )
                return self.convert_db_row(row)
