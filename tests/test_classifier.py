import json

import httpx
import pytest

from app.classifier import ClassifierClient
from app.errors import InvalidRequest, NotFound, ServiceUnavailable, UpstreamError


def make_client(handler, **kw) -> ClassifierClient:
    return ClassifierClient("http://scorer.local/", transport=httpx.MockTransport(handler), **kw)


@pytest.mark.asyncio
async def test_predict_sends_multipart_image():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["content_type"] = request.headers["content-type"]
        seen["body"] = request.read()
        return httpx.Response(200, json={"prediction": "Ongole", "confidence": 0.81, "processing_time": 1.2})

    result = await make_client(handler).predict(b"PNGDATA", "calf.png", "image/png")

    assert seen["path"] == "/predict"
    assert seen["content_type"].startswith("multipart/form-data")
    assert b'name="image"; filename="calf.png"' in seen["body"]
    assert b"PNGDATA" in seen["body"]
    assert result.breed_name == "Ongole"
    assert result.confidence == pytest.approx(0.81)
    assert result.processing_time == pytest.approx(1.2)
    assert result.additional_info is None


@pytest.mark.asyncio
async def test_connection_refused_is_service_unavailable():
    def handler(request):
        raise httpx.ConnectError("Connection refused", request=request)

    with pytest.raises(ServiceUnavailable):
        await make_client(handler).predict(b"x", "a.jpg")
    assert await make_client(handler).is_healthy() is False


@pytest.mark.asyncio
async def test_read_timeout_is_upstream_error():
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(UpstreamError):
        await make_client(handler).predict(b"x", "a.jpg")


@pytest.mark.asyncio
@pytest.mark.parametrize("status,exc", [(400, InvalidRequest), (500, UpstreamError), (503, UpstreamError),
                                        (404, UpstreamError)])
async def test_http_errors_are_mapped(status, exc):
    client = make_client(lambda request: httpx.Response(status, json={"error": "nope"}))
    with pytest.raises(exc):
        await client.predict(b"x", "a.jpg")


@pytest.mark.asyncio
async def test_oversized_response_is_rejected():
    big = json.dumps({"prediction": "Gir", "confidence": 0.9, "pad": "x" * 2048}).encode()
    client = make_client(lambda request: httpx.Response(200, content=big), max_response_bytes=1024)
    with pytest.raises(UpstreamError):
        await client.predict(b"x", "a.jpg")


@pytest.mark.asyncio
async def test_malformed_json_is_upstream_error():
    client = make_client(lambda request: httpx.Response(200, content=b"<html>oops</html>"))
    with pytest.raises(UpstreamError):
        await client.predict(b"x", "a.jpg")


@pytest.mark.asyncio
async def test_breed_info_quotes_name_and_maps_404():
    seen = []

    def handler(request):
        seen.append(request.url.raw_path)
        if request.url.raw_path == b"/breed-info/Red%20Sindhi":
            return httpx.Response(200, json={"name": "Red Sindhi"})
        return httpx.Response(404)

    client = make_client(handler)
    assert (await client.breed_info("Red Sindhi"))["name"] == "Red Sindhi"
    assert seen[0] == b"/breed-info/Red%20Sindhi"

    with pytest.raises(NotFound):
        await client.breed_info("Nope")


@pytest.mark.asyncio
async def test_list_breeds_tolerates_missing_key():
    client = make_client(lambda request: httpx.Response(200, json={}))
    assert await client.list_breeds() == []
