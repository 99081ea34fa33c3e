import base64
import io
import uuid
from typing import Dict, List, Optional, Tuple

import pytest
from PIL import Image

from svc_swap.domain.enums import TransactionType
from svc_swap.services.credit_ledger import (
    REFUND_DESCRIPTION,
    USAGE_DESCRIPTION,
    DebitReceipt,
    plan_debit,
    plan_refund,
)
from svc_swap.services.image_reconciler import ReconcileOutcome
from svc_swap.services.providers.base import FaceSwapInput, FaceSwapResult


def png_bytes(width: int, height: int, color=(200, 120, 80), mode: str = "RGB") -> bytes:
    img = Image.new(mode, (width, height), color if mode == "RGB" else color + (255,))
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def png_data_url(width: int, height: int, **kwargs) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes(width, height, **kwargs)).decode("ascii")


@pytest.fixture
def make_data_url():
    """Factory for in-memory PNG data URLs"""
    return png_data_url


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class FakeStager:
    """Pretends to upload inline images; remote URLs pass through."""

    def __init__(self):
        self.uploads: List[Tuple[str, str]] = []

    async def upload_temp_image(self, image: str, prefix: str) -> str:
        if image.startswith("http"):
            return image
        self.uploads.append((prefix, image))
        return f"https://blob.test/temp/{prefix}/{len(self.uploads)}.png"


@pytest.fixture
def stager():
    return FakeStager()


class InMemoryLedger:
    """
    Ledger with the same arithmetic as the SQL one (plan_debit / plan_refund),
    backed by dicts.
    """

    def __init__(self, balances: Optional[Dict[str, int]] = None):
        self.balances: Dict[str, int] = dict(balances or {})
        self.transactions: List[dict] = []
        self.swaps: Dict[str, dict] = {}

    async def debit(self, *, user_id, cost, style, template_id=None, template_title=None) -> DebitReceipt:
        plan = plan_debit(self.balances.get(user_id), cost)
        self.balances[user_id] = plan.balance_after
        tx_id = str(uuid.uuid4())
        swap_id = str(uuid.uuid4())
        self.transactions.append(
            {
                "id": tx_id,
                "user_id": user_id,
                "type": TransactionType.usage.value,
                "credits": plan.delta,
                "balance_before": plan.balance_before,
                "balance_after": plan.balance_after,
                "description": USAGE_DESCRIPTION,
                "face_swap_id": swap_id,
            }
        )
        self.swaps[swap_id] = {
            "status": "processing",
            "user_id": user_id,
            "style": style,
            "template_id": template_id,
            "result_image_url": None,
        }
        return DebitReceipt(
            user_id=user_id,
            face_swap_id=swap_id,
            transaction_id=tx_id,
            cost=cost,
            balance_after=plan.balance_after,
        )

    async def complete(self, receipt: DebitReceipt, result_image_url) -> None:
        swap = self.swaps[receipt.face_swap_id]
        if swap["status"] == "processing":
            swap["status"] = "completed"
            swap["result_image_url"] = result_image_url

    async def refund(self, receipt: DebitReceipt, error_message: str):
        plan = plan_refund(self.balances.get(receipt.user_id), receipt.cost)
        self.balances[receipt.user_id] = plan.balance_after
        self.transactions.append(
            {
                "id": str(uuid.uuid4()),
                "user_id": receipt.user_id,
                "type": TransactionType.bonus.value,
                "credits": plan.delta,
                "balance_before": plan.balance_before,
                "balance_after": plan.balance_after,
                "description": REFUND_DESCRIPTION,
                "face_swap_id": receipt.face_swap_id,
            }
        )
        swap = self.swaps[receipt.face_swap_id]
        swap["status"] = "failed"
        swap["error_message"] = error_message
        return plan.balance_after


class ScriptedBackend:
    """Returns queued results in order; queued exceptions are raised."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls: List[FaceSwapInput] = []

    async def perform_face_swap(self, data: FaceSwapInput) -> FaceSwapResult:
        self.calls.append(data)
        item = self.results.pop(0)
        if isinstance(item, BaseException):
            raise item
        return FaceSwapResult(result_image=item, provider="fake")


class PassthroughReconciler:
    async def reconcile_or_keep(self, result_image: str, template_image: str) -> ReconcileOutcome:
        return ReconcileOutcome(image=result_image, resized=False)


class FakeResultStore:
    def __init__(self, configured: bool = True, fail: bool = False):
        self._configured = configured
        self.fail = fail
        self.uploads: List[Tuple[str, str]] = []

    @property
    def configured(self) -> bool:
        return self._configured

    async def upload_face_swap_result(self, data_url: str, user_id: str, face_swap_id: str) -> str:
        if self.fail:
            raise RuntimeError("blob storage unavailable")
        self.uploads.append((user_id, face_swap_id))
        return f"https://blob.test/faceSwaps/{user_id}/{face_swap_id}.png"


class RecordingUsage:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.increments: List[str] = []
        self.appended: List[Tuple[str, str]] = []

    async def increment_usage(self, template_id: str) -> None:
        if self.fail:
            raise RuntimeError("db down")
        self.increments.append(template_id)

    async def append_used_template(self, user_id: str, template_id: str) -> None:
        if self.fail:
            raise RuntimeError("db down")
        self.appended.append((user_id, template_id))
