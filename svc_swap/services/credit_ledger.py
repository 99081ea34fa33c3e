from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import asyncpg

from svc_swap.domain.enums import TransactionType
from svc_swap.domain.errors import InsufficientCreditsError
from svc_swap.repos.credit_transactions_repo import CreditTransactionsRepo
from svc_swap.repos.face_swaps_repo import FaceSwapsRepo
from svc_swap.repos.users_repo import UsersRepo

logger = logging.getLogger(__name__)

USAGE_DESCRIPTION = "Face swap"
REFUND_DESCRIPTION = "Face swap failed - credit refunded"


@dataclass(frozen=True)
class LedgerEntryPlan:
    balance_before: int
    balance_after: int
    delta: int


def plan_debit(balance: Optional[int], cost: int) -> LedgerEntryPlan:
    """
    Balance arithmetic for a swap charge. A missing user counts as an empty
    wallet; nothing is written when this raises.
    """
    if cost < 0:
        raise ValueError("cost must be >= 0")
    current = int(balance or 0)
    if balance is None or current < cost:
        raise InsufficientCreditsError()
    return LedgerEntryPlan(balance_before=current, balance_after=current - cost, delta=-cost)


def plan_refund(balance: Optional[int], cost: int) -> LedgerEntryPlan:
    current = int(balance or 0)
    return LedgerEntryPlan(balance_before=current, balance_after=current + cost, delta=cost)


@dataclass(frozen=True)
class DebitReceipt:
    user_id: str
    face_swap_id: str
    transaction_id: str
    cost: int
    balance_after: int


class CreditLedger(Protocol):
    async def debit(
        self,
        *,
        user_id: str,
        cost: int,
        style: str,
        template_id: Optional[str] = None,
        template_title: Optional[str] = None,
    ) -> DebitReceipt:
        ...

    async def complete(self, receipt: DebitReceipt, result_image_url: Optional[str]) -> None:
        ...

    async def refund(self, receipt: DebitReceipt, error_message: str) -> Optional[int]:
        ...


class PostgresCreditLedger:
    """
    Each phase (debit, refund) is one DB transaction holding a row lock on the
    user's balance, so concurrent swaps by one user serialize on the check.
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        *,
        users: Optional[UsersRepo] = None,
        transactions: Optional[CreditTransactionsRepo] = None,
        face_swaps: Optional[FaceSwapsRepo] = None,
    ) -> None:
        self.pool = pool
        self.users = users or UsersRepo(pool)
        self.transactions = transactions or CreditTransactionsRepo(pool)
        self.face_swaps = face_swaps or FaceSwapsRepo(pool)

    async def debit(
        self,
        *,
        user_id: str,
        cost: int,
        style: str,
        template_id: Optional[str] = None,
        template_title: Optional[str] = None,
    ) -> DebitReceipt:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                balance = await self.users.lock_balance(conn, user_id)
                plan = plan_debit(balance, cost)

                await self.users.set_balance(conn, user_id, plan.balance_after)
                tx_id = await self.transactions.insert(
                    conn,
                    user_id=user_id,
                    type=TransactionType.usage.value,
                    credits=plan.delta,
                    balance_before=plan.balance_before,
                    balance_after=plan.balance_after,
                    description=USAGE_DESCRIPTION,
                )
                swap_id = await self.face_swaps.insert_processing(
                    conn,
                    user_id=user_id,
                    style=style,
                    credits_used=cost,
                    transaction_id=tx_id,
                    template_id=template_id,
                    template_title=template_title,
                )
                await self.transactions.link_face_swap(conn, tx_id, swap_id)

        logger.info(
            "credits_debited",
            extra={"user_id": user_id, "face_swap_id": swap_id, "cost": cost, "balance_after": plan.balance_after},
        )
        return DebitReceipt(
            user_id=user_id,
            face_swap_id=swap_id,
            transaction_id=tx_id,
            cost=cost,
            balance_after=plan.balance_after,
        )

    async def complete(self, receipt: DebitReceipt, result_image_url: Optional[str]) -> None:
        updated = await self.face_swaps.mark_completed(receipt.face_swap_id, result_image_url)
        if not updated:
            logger.warning("face_swap_complete_noop", extra={"face_swap_id": receipt.face_swap_id})

    async def refund(self, receipt: DebitReceipt, error_message: str) -> Optional[int]:
        """Compensating credit + failed status, atomically. Returns the new balance."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                balance = await self.users.lock_balance(conn, receipt.user_id)
                new_balance: Optional[int] = None
                if balance is not None:
                    plan = plan_refund(balance, receipt.cost)
                    await self.users.set_balance(conn, receipt.user_id, plan.balance_after)
                    await self.transactions.insert(
                        conn,
                        user_id=receipt.user_id,
                        type=TransactionType.bonus.value,
                        credits=plan.delta,
                        balance_before=plan.balance_before,
                        balance_after=plan.balance_after,
                        description=REFUND_DESCRIPTION,
                        metadata={
                            "faceSwapId": receipt.face_swap_id,
                            "originalTransactionId": receipt.transaction_id,
                        },
                        face_swap_id=receipt.face_swap_id,
                    )
                    new_balance = plan.balance_after
                else:
                    logger.error("refund_user_missing", extra={"user_id": receipt.user_id})
                await self.face_swaps.mark_failed(conn, receipt.face_swap_id, error_message)

        logger.info(
            "credits_refunded",
            extra={"user_id": receipt.user_id, "face_swap_id": receipt.face_swap_id, "balance_after": new_balance},
        )
        return new_balance
