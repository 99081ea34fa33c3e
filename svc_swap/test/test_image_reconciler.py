import httpx
import pytest

from svc_swap.services import image_io
from svc_swap.services.image_reconciler import ImageReconciler, measure
from svc_swap.test.conftest import png_bytes, png_data_url


@pytest.fixture
def reconciler():
    return ImageReconciler(quality=95)


@pytest.mark.asyncio
async def test_resizes_to_template_dimensions(reconciler):
    """Provider output of a different size is stretched to the template size"""
    template = png_data_url(640, 480)
    result = png_data_url(512, 512)

    outcome = await reconciler.reconcile_to_template(result, template)

    assert outcome.resized
    assert outcome.original_size == (512, 512)
    assert outcome.target_size == (640, 480)
    assert outcome.image.startswith("data:image/jpeg;base64,")
    data, _ = image_io.decode_data_url(outcome.image)
    assert measure(data) == (640, 480)


@pytest.mark.asyncio
async def test_equal_size_returns_input_unchanged(reconciler):
    template = png_data_url(300, 200)
    result = png_data_url(300, 200, color=(10, 10, 10))

    outcome = await reconciler.reconcile_to_template(result, template)

    assert not outcome.resized
    assert outcome.image == result


@pytest.mark.asyncio
async def test_alpha_result_is_flattened(reconciler):
    template = png_data_url(100, 100)
    result = png_data_url(50, 80, color=(0, 0, 255), mode="RGBA")

    outcome = await reconciler.reconcile_to_template(result, template)

    data, _ = image_io.decode_data_url(outcome.image)
    assert measure(data) == (100, 100)


@pytest.mark.asyncio
async def test_remote_template_is_fetched():
    body = png_bytes(320, 240)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body, headers={"content-type": "image/png"})

    reconciler = ImageReconciler(transport=httpx.MockTransport(handler))
    outcome = await reconciler.reconcile_to_template(png_data_url(64, 64), "https://cdn.test/template.png")

    assert outcome.resized
    assert outcome.target_size == (320, 240)


@pytest.mark.asyncio
async def test_failure_keeps_original(reconciler):
    """A broken template does not fail the swap"""
    result = png_data_url(64, 64)
    broken = "data:image/png;base64," + "aGVsbG8="

    outcome = await reconciler.reconcile_or_keep(result, broken)

    assert outcome.image == result
    assert not outcome.resized


@pytest.mark.asyncio
async def test_fetch_failure_keeps_original():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    reconciler = ImageReconciler(transport=httpx.MockTransport(handler))
    result = png_data_url(64, 64)

    outcome = await reconciler.reconcile_or_keep(result, "https://cdn.test/missing.png")

    assert outcome.image == result
