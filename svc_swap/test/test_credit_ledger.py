from contextlib import asynccontextmanager
from typing import List, Optional

import pytest

from svc_swap.domain.errors import InsufficientCreditsError
from svc_swap.services.credit_ledger import (
    REFUND_DESCRIPTION,
    USAGE_DESCRIPTION,
    DebitReceipt,
    PostgresCreditLedger,
)


def _sql(query: str) -> str:
    return " ".join(query.split())


class RecordingConn:
    """
    Stands in for an asyncpg connection: keeps one user's balance, records
    every statement and every transaction block.
    """

    def __init__(self, balance: Optional[int]):
        self.balance = balance
        self.statements: List[tuple] = []
        self.transactions: List[dict] = []
        self._open: Optional[dict] = None

    @asynccontextmanager
    async def transaction(self):
        block = {"statements": [], "rolled_back": False}
        self.transactions.append(block)
        self._open = block
        try:
            yield
        except BaseException:
            block["rolled_back"] = True
            raise
        finally:
            self._open = None

    def _record(self, query: str, args: tuple) -> str:
        sql = _sql(query)
        self.statements.append((sql, args))
        if self._open is not None:
            self._open["statements"].append((sql, args))
        return sql

    async def fetchval(self, query: str, *args):
        sql = self._record(query, args)
        if "FOR UPDATE" in sql:
            return self.balance
        if sql.startswith("INSERT INTO credit_transactions"):
            return f"tx-{len(self.writes('INSERT INTO credit_transactions'))}"
        if sql.startswith("INSERT INTO face_swaps"):
            return "fs-1"
        raise AssertionError(f"unexpected fetchval: {sql}")

    async def execute(self, query: str, *args) -> str:
        sql = self._record(query, args)
        if sql.startswith("UPDATE users SET credits"):
            self.balance = args[1]
        return "UPDATE 1"

    def writes(self, prefix: str) -> List[tuple]:
        return [(sql, args) for sql, args in self.statements if sql.startswith(prefix)]


class FakePool:
    def __init__(self, conn: RecordingConn):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


def _ledger(balance: Optional[int]):
    conn = RecordingConn(balance)
    return PostgresCreditLedger(FakePool(conn)), conn


def _receipt(**kwargs) -> DebitReceipt:
    defaults = dict(user_id="u1", face_swap_id="fs-1", transaction_id="tx-1", cost=1, balance_after=4)
    defaults.update(kwargs)
    return DebitReceipt(**defaults)


@pytest.mark.asyncio
async def test_debit_is_one_locked_transaction():
    ledger, conn = _ledger(5)

    receipt = await ledger.debit(user_id="u1", cost=1, style="natural", template_id="tpl-1", template_title="Beach")

    assert receipt == DebitReceipt(user_id="u1", face_swap_id="fs-1", transaction_id="tx-1", cost=1, balance_after=4)
    assert len(conn.transactions) == 1
    block = conn.transactions[0]
    assert not block["rolled_back"]

    # the balance row is locked before anything is written
    first_sql, first_args = block["statements"][0]
    assert first_sql == "SELECT credits FROM users WHERE id = $1 FOR UPDATE"
    assert first_args == ("u1",)
    assert [" ".join(sql.split()[:3]) for sql, _ in block["statements"][1:]] == [
        "UPDATE users SET",
        "INSERT INTO credit_transactions",
        "INSERT INTO face_swaps",
        "UPDATE credit_transactions SET",
    ]
    assert conn.balance == 4


@pytest.mark.asyncio
async def test_debit_ledger_row_balances_and_links_the_swap():
    ledger, conn = _ledger(3)

    await ledger.debit(user_id="u1", cost=1, style="natural")

    (_, tx_args), = conn.writes("INSERT INTO credit_transactions")
    user_id, tx_type, credits, before, after, description = tx_args[:6]
    assert (user_id, tx_type, credits, before, after, description) == ("u1", "usage", -1, 3, 2, USAGE_DESCRIPTION)
    assert before + credits == after

    (_, swap_args), = conn.writes("INSERT INTO face_swaps")
    assert swap_args[0] == "u1"
    assert swap_args[-1] == "tx-1"

    (link_sql, link_args), = conn.writes("UPDATE credit_transactions")
    assert "SET face_swap_id = $2::uuid" in link_sql
    assert link_args == ("tx-1", "fs-1")


@pytest.mark.asyncio
async def test_insufficient_credits_writes_nothing():
    ledger, conn = _ledger(0)

    with pytest.raises(InsufficientCreditsError):
        await ledger.debit(user_id="u1", cost=1, style="natural")

    assert len(conn.transactions) == 1
    assert conn.transactions[0]["rolled_back"]
    assert [sql for sql, _ in conn.statements] == ["SELECT credits FROM users WHERE id = $1 FOR UPDATE"]
    assert conn.balance == 0


@pytest.mark.asyncio
async def test_missing_user_cannot_be_debited():
    ledger, conn = _ledger(None)

    with pytest.raises(InsufficientCreditsError):
        await ledger.debit(user_id="ghost", cost=1, style="natural")

    assert conn.writes("UPDATE") == []
    assert conn.writes("INSERT") == []


@pytest.mark.asyncio
async def test_refund_credits_back_and_fails_the_swap_atomically():
    ledger, conn = _ledger(4)

    new_balance = await ledger.refund(_receipt(), "provider timeout")

    assert new_balance == 5
    assert len(conn.transactions) == 1
    block = conn.transactions[0]
    assert block["statements"][0][0].endswith("FOR UPDATE")

    (_, tx_args), = conn.writes("INSERT INTO credit_transactions")
    assert tx_args[:6] == ("u1", "bonus", 1, 4, 5, REFUND_DESCRIPTION)
    assert tx_args[-1] == "fs-1"

    (failed_sql, failed_args), = conn.writes("UPDATE face_swaps")
    assert "status = 'failed'" in failed_sql
    assert "status = 'processing'" in failed_sql
    assert failed_args == ("fs-1", "provider timeout")
    # every statement of the refund ran inside the one transaction
    assert len(block["statements"]) == len(conn.statements)


@pytest.mark.asyncio
async def test_refund_for_missing_user_still_marks_failed():
    ledger, conn = _ledger(None)

    assert await ledger.refund(_receipt(user_id="ghost"), "boom") is None

    assert conn.writes("INSERT INTO credit_transactions") == []
    assert conn.writes("UPDATE users") == []
    assert len(conn.writes("UPDATE face_swaps")) == 1
    assert len(conn.transactions) == 1


@pytest.mark.asyncio
async def test_complete_only_moves_processing_swaps():
    ledger, conn = _ledger(4)

    await ledger.complete(_receipt(), "face-swaps/faceSwaps/u1/fs-1.png")

    (sql, args), = conn.writes("UPDATE face_swaps")
    assert "status = 'completed'" in sql
    assert "WHERE id = $1::uuid AND status = 'processing'" in sql
    assert args == ("fs-1", "face-swaps/faceSwaps/u1/fs-1.png")
    assert conn.transactions == []
