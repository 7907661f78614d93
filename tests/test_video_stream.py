import httpx
import pytest

from backend.services import veo_service

VIDEO_URI = "https://generativelanguage.googleapis.com/v1beta/files/abc:download?alt=media"


async def test_stream_closes_upstream_when_read_fails(settings):
    async def broken_body():
        yield b"first"
        raise httpx.ReadError("connection reset")

    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=broken_body()))
    stream = await veo_service.open_video_stream(VIDEO_URI, settings, transport)

    received = []
    with pytest.raises(httpx.ReadError):
        async for chunk in stream.iter_bytes():
            received.append(chunk)

    assert received == [b"first"]
    assert stream.response.is_closed
    assert stream.client.is_closed


async def test_stream_closes_after_last_chunk(settings):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"whole"))
    stream = await veo_service.open_video_stream(VIDEO_URI, settings, transport)

    chunks = [chunk async for chunk in stream.iter_bytes()]

    assert b"".join(chunks) == b"whole"
    assert stream.client.is_closed
    await stream.aclose()
