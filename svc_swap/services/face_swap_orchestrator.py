from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Optional, Protocol, Set

from svc_swap.domain.errors import (
    ProcessingError,
    ProviderError,
    RateLimitExceededError,
    SwapError,
)
from svc_swap.domain.models import FaceSwapRequest
from svc_swap.services import rate_limiter as rl
from svc_swap.services.credit_ledger import CreditLedger, DebitReceipt
from svc_swap.services.image_reconciler import ReconcileOutcome
from svc_swap.services.providers.base import FaceSwapInput, FaceSwapResult

logger = logging.getLogger(__name__)

DEFAULT_STYLE = "natural"
DEFAULT_PROMPT = (
    "A high-quality face swap where the face from the second image replaces the face of the person "
    "in the first image. The new face must integrate into the scene, adopting the exact lighting, "
    "shadows and color grading of the first image while keeping the identity and expression of the "
    "second image."
)


class SwapBackend(Protocol):
    async def perform_face_swap(self, data: FaceSwapInput) -> FaceSwapResult:
        ...


class Reconciler(Protocol):
    async def reconcile_or_keep(self, result_image: str, template_image: str) -> ReconcileOutcome:
        ...


class ResultStore(Protocol):
    @property
    def configured(self) -> bool:
        ...

    async def upload_face_swap_result(self, data_url: str, user_id: str, face_swap_id: str) -> str:
        ...


class UsageCounter(Protocol):
    async def increment_usage(self, template_id: str) -> None:
        ...


class UsageHistory(Protocol):
    async def append_used_template(self, user_id: str, template_id: str) -> None:
        ...


@dataclass(frozen=True)
class FaceSwapOutcome:
    result_image: str
    face_swap_id: Optional[str] = None
    credits_remaining: Optional[int] = None
    result_image_url: Optional[str] = None
    resized: bool = False


class FaceSwapOrchestrator:
    """
    requested -> rate limit -> (paid) debit -> provider -> reconcile -> upload
    -> complete | refund.

    This is the only place that decides between completing and refunding.
    Template usage and profile history updates run in the background and never
    change the request outcome.
    """

    def __init__(
        self,
        *,
        ledger: CreditLedger,
        backend: SwapBackend,
        reconciler: Reconciler,
        store: ResultStore,
        usage_counter: UsageCounter,
        usage_history: UsageHistory,
        limiter: rl.RateLimiter,
        cost_per_swap: int = 1,
    ) -> None:
        self.ledger = ledger
        self.backend = backend
        self.reconciler = reconciler
        self.store = store
        self.usage_counter = usage_counter
        self.usage_history = usage_history
        self.limiter = limiter
        self.cost_per_swap = cost_per_swap
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def build_input(req: FaceSwapRequest, prompt: Optional[str] = None) -> FaceSwapInput:
        return FaceSwapInput(
            target_image=req.target_image,
            source_image=req.source_image,
            prompt=prompt or DEFAULT_PROMPT,
            is_group_swap=req.is_group_swap,
            face_index=req.face_index,
            total_faces=req.total_faces,
            slot_type=req.slot_type.value if req.slot_type else None,
            slot_label=req.slot_label,
            provider=req.provider.value if req.provider else None,
        )

    async def _check_rate(self, config: rl.RateLimitConfig, identifier: str) -> None:
        result = await self.limiter.check(config, identifier)
        if not result.allowed:
            raise RateLimitExceededError(result)

    async def _swap_and_reconcile(self, req: FaceSwapRequest, prompt: Optional[str]) -> ReconcileOutcome:
        result = await self.backend.perform_face_swap(self.build_input(req, prompt))
        return await self.reconciler.reconcile_or_keep(result.result_image, req.target_image)

    async def _store_result(self, image: str, user_id: str, face_swap_id: str) -> Optional[str]:
        """Upload failure after a good swap is not a swap failure: the record completes with a null URL."""
        if not self.store.configured:
            return None
        try:
            return await self.store.upload_face_swap_result(image, user_id, face_swap_id)
        except Exception:
            logger.exception("face_swap_upload_failed", extra={"user_id": user_id, "face_swap_id": face_swap_id})
            return None

    def _fire_and_forget(self, name: str, aw: Awaitable[Any], **context: Any) -> None:
        async def _run() -> None:
            try:
                await aw
            except Exception as e:
                logger.warning("best_effort_failed", extra={"op": name, "error": str(e), **context})

        task = asyncio.create_task(_run())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for pending background updates (shutdown, tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _record_usage(self, user_id: Optional[str], template_id: Optional[str]) -> None:
        if not template_id:
            return
        self._fire_and_forget("increment_usage", self.usage_counter.increment_usage(template_id), template_id=template_id)
        if user_id:
            self._fire_and_forget(
                "append_used_template",
                self.usage_history.append_used_template(user_id, template_id),
                user_id=user_id,
                template_id=template_id,
            )

    async def _refund(self, receipt: DebitReceipt, error: BaseException) -> None:
        try:
            await self.ledger.refund(receipt, str(error) or type(error).__name__)
        except Exception:
            # the failure is still reported; an operator must reconcile this swap by hand
            logger.exception(
                "credit_refund_failed",
                extra={"user_id": receipt.user_id, "face_swap_id": receipt.face_swap_id, "cost": receipt.cost},
            )

    @staticmethod
    def _as_processing_error(e: BaseException) -> SwapError:
        if isinstance(e, ProviderError):
            return ProcessingError(reason=e.reason)
        if isinstance(e, SwapError):
            return e
        return ProcessingError(reason=type(e).__name__)

    # ------------------------------------------------------------------
    # public
    # ------------------------------------------------------------------

    async def process_authenticated(
        self,
        req: FaceSwapRequest,
        user_id: str,
        *,
        prompt: Optional[str] = None,
    ) -> FaceSwapOutcome:
        await self._check_rate(rl.FACE_SWAP, user_id)

        receipt = await self.ledger.debit(
            user_id=user_id,
            cost=self.cost_per_swap,
            style=req.style or DEFAULT_STYLE,
            template_id=req.template_id,
            template_title=req.template_title,
        )

        try:
            outcome = await self._swap_and_reconcile(req, prompt)
            url = await self._store_result(outcome.image, user_id, receipt.face_swap_id)
            await self.ledger.complete(receipt, url)
        except Exception as e:
            logger.error(
                "face_swap_failed",
                extra={
                    "user_id": user_id,
                    "face_swap_id": receipt.face_swap_id,
                    "reason": getattr(e, "reason", None) or type(e).__name__,
                    "error": str(e),
                },
            )
            await self._refund(receipt, e)
            err = self._as_processing_error(e)
            if err is e:
                raise
            raise err from e

        self._record_usage(user_id, req.template_id)
        logger.info(
            "face_swap_completed",
            extra={"user_id": user_id, "face_swap_id": receipt.face_swap_id, "resized": outcome.resized},
        )
        return FaceSwapOutcome(
            result_image=outcome.image,
            face_swap_id=receipt.face_swap_id,
            credits_remaining=receipt.balance_after,
            result_image_url=url,
            resized=outcome.resized,
        )

    async def process_guest(
        self,
        req: FaceSwapRequest,
        guest_id: str,
        *,
        session_id: Optional[str] = None,
        prompt: Optional[str] = None,
    ) -> FaceSwapOutcome:
        """
        One free swap per guest identifier (the client IP); no ledger entries.
        `session_id` is only echoed back as the outcome id.
        """
        await self._check_rate(rl.GUEST_TRIAL, guest_id)

        try:
            outcome = await self._swap_and_reconcile(req, prompt)
        except Exception as e:
            # a failed attempt does not spend the trial
            await self.limiter.reset(rl.GUEST_TRIAL, guest_id)
            logger.error("guest_face_swap_failed", extra={"guest_id": guest_id, "error": str(e)})
            err = self._as_processing_error(e)
            if err is e:
                raise
            raise err from e

        self._record_usage(None, req.template_id)
        logger.info("guest_face_swap_completed", extra={"guest_id": guest_id, "resized": outcome.resized})
        return FaceSwapOutcome(result_image=outcome.image, face_swap_id=session_id, resized=outcome.resized)

