import pytest

from svc_swap.domain.errors import (
    InsufficientCreditsError,
    ProcessingError,
    ProviderError,
    RateLimitExceededError,
)
from svc_swap.domain.models import FaceSwapRequest
from svc_swap.services import rate_limiter as rl
from svc_swap.services.face_swap_orchestrator import FaceSwapOrchestrator
from svc_swap.test.conftest import (
    FakeResultStore,
    InMemoryLedger,
    PassthroughReconciler,
    RecordingUsage,
    ScriptedBackend,
    png_data_url,
)

RESULT = "data:image/png;base64,UkVTVUxU"


def _request(**kwargs) -> FaceSwapRequest:
    defaults = dict(
        source_image=png_data_url(4, 4),
        target_image=png_data_url(8, 8),
        template_id="tpl-1",
        template_title="Beach",
    )
    defaults.update(kwargs)
    return FaceSwapRequest(**defaults)


def _orchestrator(ledger, backend, *, store=None, usage=None, clock=None) -> FaceSwapOrchestrator:
    usage = usage or RecordingUsage()
    limiter = rl.RateLimiter(rl.InMemoryRateLimitStore(), clock=clock) if clock else rl.RateLimiter()
    return FaceSwapOrchestrator(
        ledger=ledger,
        backend=backend,
        reconciler=PassthroughReconciler(),
        store=store or FakeResultStore(),
        usage_counter=usage,
        usage_history=usage,
        limiter=limiter,
        cost_per_swap=1,
    )


def _net_credits(ledger: InMemoryLedger, user_id: str) -> int:
    return sum(t["credits"] for t in ledger.transactions if t["user_id"] == user_id)


@pytest.mark.asyncio
async def test_successful_swap_debits_once_and_completes():
    ledger = InMemoryLedger({"u1": 5})
    usage = RecordingUsage()
    orch = _orchestrator(ledger, ScriptedBackend(RESULT), usage=usage)

    outcome = await orch.process_authenticated(_request(), "u1")
    await orch.drain()

    assert outcome.result_image == RESULT
    assert outcome.credits_remaining == 4
    assert outcome.result_image_url == f"https://blob.test/faceSwaps/u1/{outcome.face_swap_id}.png"
    assert ledger.balances["u1"] == 4
    assert ledger.swaps[outcome.face_swap_id]["status"] == "completed"
    assert [t["type"] for t in ledger.transactions] == ["usage"]
    assert usage.increments == ["tpl-1"]
    assert usage.appended == [("u1", "tpl-1")]


@pytest.mark.asyncio
async def test_backend_receives_default_prompt_and_slot_fields():
    backend = ScriptedBackend(RESULT)
    orch = _orchestrator(InMemoryLedger({"u1": 1}), backend)

    req = _request(is_group_swap=True, face_index=1, total_faces=2, slot_type="pet", slot_label="Dog")
    await orch.process_authenticated(req, "u1")

    sent = backend.calls[0]
    assert sent.prompt
    assert sent.is_group_swap
    assert sent.face_index == 1
    assert sent.slot_type == "pet"
    assert sent.target_image == req.target_image


@pytest.mark.asyncio
async def test_insufficient_credits_leaves_everything_untouched():
    ledger = InMemoryLedger({"u1": 0})
    backend = ScriptedBackend(RESULT)
    orch = _orchestrator(ledger, backend)

    with pytest.raises(InsufficientCreditsError):
        await orch.process_authenticated(_request(), "u1")

    assert ledger.balances["u1"] == 0
    assert ledger.transactions == []
    assert ledger.swaps == {}
    assert backend.calls == []


@pytest.mark.asyncio
async def test_unknown_user_has_no_credits():
    orch = _orchestrator(InMemoryLedger(), ScriptedBackend(RESULT))
    with pytest.raises(InsufficientCreditsError):
        await orch.process_authenticated(_request(), "ghost")


@pytest.mark.asyncio
async def test_provider_failure_refunds_and_marks_failed():
    ledger = InMemoryLedger({"u1": 3})
    usage = RecordingUsage()
    orch = _orchestrator(ledger, ScriptedBackend(ProviderError("GEMINI_NO_IMAGE")), usage=usage)

    with pytest.raises(ProcessingError) as exc:
        await orch.process_authenticated(_request(), "u1")
    await orch.drain()

    assert exc.value.code == "PROCESSING_ERROR"
    assert exc.value.reason == "GEMINI_NO_IMAGE"
    assert ledger.balances["u1"] == 3
    assert [t["type"] for t in ledger.transactions] == ["usage", "bonus"]
    assert _net_credits(ledger, "u1") == 0
    (swap,) = ledger.swaps.values()
    assert swap["status"] == "failed"
    assert usage.increments == []


@pytest.mark.asyncio
async def test_unexpected_failure_is_reported_as_processing_error():
    ledger = InMemoryLedger({"u1": 1})
    orch = _orchestrator(ledger, ScriptedBackend(RuntimeError("kaboom")))

    with pytest.raises(ProcessingError) as exc:
        await orch.process_authenticated(_request(), "u1")

    assert exc.value.reason == "RuntimeError"
    assert ledger.balances["u1"] == 1


@pytest.mark.asyncio
async def test_ledger_conserves_credits_over_mixed_outcomes():
    """Final balance equals starting balance plus the sum of ledger deltas"""
    ledger = InMemoryLedger({"u1": 4})
    backend = ScriptedBackend(RESULT, ProviderError("WAVESPEED_API_ERROR"), RESULT, RuntimeError("x"))
    orch = _orchestrator(ledger, backend)

    for _ in range(4):
        try:
            await orch.process_authenticated(_request(), "u1")
        except ProcessingError:
            pass

    assert ledger.balances["u1"] == 2
    assert 4 + _net_credits(ledger, "u1") == ledger.balances["u1"]
    statuses = sorted(s["status"] for s in ledger.swaps.values())
    assert statuses == ["completed", "completed", "failed", "failed"]


@pytest.mark.asyncio
async def test_upload_failure_still_completes_with_null_url():
    ledger = InMemoryLedger({"u1": 2})
    orch = _orchestrator(ledger, ScriptedBackend(RESULT), store=FakeResultStore(fail=True))

    outcome = await orch.process_authenticated(_request(), "u1")

    assert outcome.result_image == RESULT
    assert outcome.result_image_url is None
    assert ledger.swaps[outcome.face_swap_id]["status"] == "completed"
    assert ledger.balances["u1"] == 1


@pytest.mark.asyncio
async def test_unconfigured_store_skips_upload():
    store = FakeResultStore(configured=False)
    orch = _orchestrator(InMemoryLedger({"u1": 1}), ScriptedBackend(RESULT), store=store)

    outcome = await orch.process_authenticated(_request(), "u1")

    assert outcome.result_image_url is None
    assert store.uploads == []


@pytest.mark.asyncio
async def test_usage_update_failures_do_not_change_the_result():
    ledger = InMemoryLedger({"u1": 1})
    orch = _orchestrator(ledger, ScriptedBackend(RESULT), usage=RecordingUsage(fail=True))

    outcome = await orch.process_authenticated(_request(), "u1")
    await orch.drain()

    assert outcome.result_image == RESULT
    assert ledger.swaps[outcome.face_swap_id]["status"] == "completed"


@pytest.mark.asyncio
async def test_rate_limit_blocks_before_debit(clock):
    ledger = InMemoryLedger({"u1": 100})
    backend = ScriptedBackend(*([RESULT] * 10))
    orch = _orchestrator(ledger, backend, clock=clock)

    for _ in range(10):
        await orch.process_authenticated(_request(), "u1")

    with pytest.raises(RateLimitExceededError) as exc:
        await orch.process_authenticated(_request(), "u1")

    assert exc.value.status_code == 429
    assert exc.value.result.retry_after == 3600
    assert ledger.balances["u1"] == 90
    assert len(backend.calls) == 10


@pytest.mark.asyncio
async def test_guest_trial_is_single_use_and_free(clock):
    ledger = InMemoryLedger()
    usage = RecordingUsage()
    orch = _orchestrator(ledger, ScriptedBackend(RESULT, RESULT), usage=usage, clock=clock)

    outcome = await orch.process_guest(_request(is_guest_trial=True), "guest-1")
    await orch.drain()

    assert outcome.result_image == RESULT
    assert outcome.face_swap_id is None
    assert outcome.credits_remaining is None
    assert ledger.transactions == []
    assert usage.increments == ["tpl-1"]
    assert usage.appended == []

    with pytest.raises(RateLimitExceededError):
        await orch.process_guest(_request(is_guest_trial=True), "guest-1")

    other = await orch.process_guest(_request(is_guest_trial=True), "guest-2")
    assert other.result_image == RESULT


@pytest.mark.asyncio
async def test_guest_session_id_is_echoed_but_not_the_quota_key(clock):
    orch = _orchestrator(InMemoryLedger(), ScriptedBackend(RESULT, RESULT), clock=clock)

    outcome = await orch.process_guest(_request(is_guest_trial=True), "1.2.3.4", session_id="sess-a")
    assert outcome.face_swap_id == "sess-a"

    with pytest.raises(RateLimitExceededError):
        await orch.process_guest(_request(is_guest_trial=True), "1.2.3.4", session_id="sess-b")


@pytest.mark.asyncio
async def test_provider_override_reaches_backend():
    backend = ScriptedBackend(RESULT)
    orch = _orchestrator(InMemoryLedger({"u1": 2}), backend)

    await orch.process_authenticated(_request(provider="wavespeed-face"), "u1")
    await orch.drain()
    assert backend.calls[0].provider == "wavespeed-face"


@pytest.mark.asyncio
async def test_failed_guest_swap_does_not_spend_the_trial(clock):
    orch = _orchestrator(
        InMemoryLedger(), ScriptedBackend(ProviderError("GEMINI_API_ERROR"), RESULT), clock=clock
    )

    with pytest.raises(ProcessingError):
        await orch.process_guest(_request(is_guest_trial=True), "guest-1")

    outcome = await orch.process_guest(_request(is_guest_trial=True), "guest-1")
    assert outcome.result_image == RESULT
