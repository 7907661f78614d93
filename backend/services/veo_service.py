import logging
import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import quote, urlsplit

import httpx

from backend.config import Settings
from backend.errors import (
    MalformedResponseError,
    NotFoundError,
    UpstreamError,
    ValidationError,
    error_for_status,
    extract_error_message,
)
from backend.models.schemas import GenerationRequest, OperationStatus, StartResult
from backend.services.upstream_client import (
    auth_headers,
    build_upstream_client,
    require_server_credential,
    translate_transport_error,
)

logger = logging.getLogger(__name__)

DEFAULT_VIDEO_CONTENT_TYPE = "application/octet-stream"
BODY_SNIPPET_LIMIT = 500
MAX_VIDEO_REDIRECTS = 5

_OPERATION_NAME_RE = re.compile(r"^[A-Za-z0-9_\-./:]+$")


@dataclass
class VideoStream:
    response: httpx.Response
    client: httpx.AsyncClient
    content_type: str
    _closed: bool = field(default=False, init=False, repr=False)

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self.response.aiter_bytes():
                yield chunk
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.response.aclose()
        finally:
            await self.client.aclose()


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _upstream_failure(response: httpx.Response, url: str) -> UpstreamError:
    payload = _safe_json(response)
    message = extract_error_message(payload)
    details = {
        "url": url,
        "status": response.status_code,
        "body": response.text[:BODY_SNIPPET_LIMIT],
    }
    logger.warning("Upstream %s returned %s", url, response.status_code)
    return error_for_status(response.status_code, message, details)


def _generate_call(request: GenerationRequest, settings: Settings):
    prompt = request.prompt.strip()
    if settings.upstream_mode == "direct":
        url = f"{settings.direct_upstream_base_url}/generate"
        body = {"prompt": prompt, "aspect_ratio": request.aspect_ratio.value}
    else:
        url = f"{settings.upstream_base_url}/models/{settings.veo_model}:predictLongRunning"
        body = {
            "instances": [{"prompt": prompt}],
            "parameters": {"aspectRatio": request.aspect_ratio.value},
        }
    return url, body


async def start_generation(
    request: GenerationRequest,
    api_key: str,
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> StartResult:
    url, body = _generate_call(request, settings)
    headers = auth_headers(settings, api_key)

    async with build_upstream_client(settings.start_timeout_seconds, transport) as client:
        try:
            response = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise translate_transport_error(exc, url) from exc

    if response.is_error:
        raise _upstream_failure(response, url)

    payload = _safe_json(response)
    if not isinstance(payload, dict):
        raise MalformedResponseError("Upstream returned a non-JSON generation response.", details={"url": url})

    if payload.get("success") is False:
        message = extract_error_message(payload) or "Upstream reported a failed generation."
        raise UpstreamError(message, status_code=502, details={"url": url})

    video_url = payload.get("videoUrl")
    if video_url:
        logger.info("Upstream returned a video directly (%s mode)", settings.upstream_mode)
        return StartResult(success=True, video_url=video_url)

    operation_name = payload.get("operationName") or payload.get("name")
    if operation_name:
        logger.info("Started video generation operation %s", operation_name)
        return StartResult(success=True, operation_name=operation_name)

    raise MalformedResponseError(
        "The API did not return a video URL or an operation name.",
        details={"url": url, "body": response.text[:BODY_SNIPPET_LIMIT]},
    )


def validate_operation_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Missing operation name")
    if ".." in name or not _OPERATION_NAME_RE.match(name):
        raise ValidationError("Invalid operation name")
    return name


async def fetch_operation(
    name: str,
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """Fetch the raw long-running-operation body for ``name``.

    The payload is validated with OperationStatus.from_payload before it is
    returned so an ambiguous terminal state is surfaced to the caller.
    """
    name = validate_operation_name(name)
    api_key = require_server_credential(settings)
    url = f"{settings.upstream_base_url}/{quote(name, safe='/:')}"

    async with build_upstream_client(settings.status_timeout_seconds, transport) as client:
        try:
            response = await client.get(url, headers={"x-goog-api-key": api_key})
        except httpx.HTTPError as exc:
            raise translate_transport_error(exc, url) from exc

    if response.is_error:
        raise _upstream_failure(response, url)

    payload = _safe_json(response)
    status = OperationStatus.from_payload(payload)
    if status.done:
        if status.error:
            logger.error("Operation %s failed: %s", name, status.error)
        else:
            logger.info("Operation %s finished with video %s", name, status.video_uri)
    return payload


def validate_video_uri(uri: Optional[str], settings: Settings) -> str:
    uri = (uri or "").strip()
    if not uri:
        raise ValidationError("Missing uri")
    parts = urlsplit(uri)
    if parts.scheme != "https" or not parts.hostname:
        raise ValidationError("Video uri must be an absolute https URL")
    allowed = {host.lower() for host in settings.video_allowed_hosts}
    if parts.hostname.lower() not in allowed:
        raise ValidationError(f"Video host {parts.hostname} is not allowed")
    return uri


async def _send_following_redirects(
    client: httpx.AsyncClient,
    uri: str,
    settings: Settings,
) -> httpx.Response:
    """GET ``uri`` and follow redirects one hop at a time.

    Every hop must pass validate_video_uri. The server key only travels to
    the host of the original URI.
    """
    origin_host = urlsplit(uri).hostname.lower()
    headers = {"x-goog-api-key": settings.api_key} if settings.api_key else {}
    request = client.build_request("GET", uri, headers=headers)

    for _ in range(MAX_VIDEO_REDIRECTS + 1):
        response = await client.send(request, stream=True)
        next_request = response.next_request
        if next_request is None:
            return response
        await response.aclose()

        next_url = str(next_request.url)
        try:
            validate_video_uri(next_url, settings)
        except ValidationError as exc:
            logger.warning("Refusing video redirect from %s: %s", request.url.host, exc.message)
            raise UpstreamError(
                "Upstream redirected to a host that is not allowed.",
                status_code=502,
                details={"url": uri, "redirect": next_url},
            ) from exc
        if next_request.url.host.lower() != origin_host and "x-goog-api-key" in next_request.headers:
            del next_request.headers["x-goog-api-key"]
        request = next_request

    raise UpstreamError("Too many redirects fetching the video.", status_code=502, details={"url": uri})


async def open_video_stream(
    uri: str,
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> VideoStream:
    uri = validate_video_uri(uri, settings)

    client = build_upstream_client(settings.video_timeout_seconds, transport, follow_redirects=False)
    try:
        response = await _send_following_redirects(client, uri, settings)
    except httpx.HTTPError as exc:
        await client.aclose()
        raise translate_transport_error(exc, uri) from exc
    except UpstreamError:
        await client.aclose()
        raise

    if response.is_error:
        try:
            await response.aread()
        finally:
            await response.aclose()
            await client.aclose()
        if response.status_code == 404:
            raise NotFoundError("Video not found", details={"url": uri, "status": 404})
        raise _upstream_failure(response, uri)

    content_type = response.headers.get("content-type") or DEFAULT_VIDEO_CONTENT_TYPE
    return VideoStream(response=response, client=client, content_type=content_type)
