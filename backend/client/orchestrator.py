"""Client side of the start -> poll -> stream sequence.

GenerationClient talks only to the proxy endpoints under ``base_url``. The
browser-facing URL it produces for a finished video always points at the
proxy's ``/video`` endpoint, so the upstream URI and key stay server side.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import quote

import httpx

from backend.config import ClientSettings, get_client_settings, validate_base_url
from backend.errors import (
    AuthError,
    MalformedResponseError,
    NetworkError,
    OperationTimeoutError,
    UpstreamError,
    ValidationError,
    VideoProxyError,
    error_for_status,
    extract_error_message,
)
from backend.models.schemas import AspectRatio, OperationStatus

logger = logging.getLogger(__name__)

BODY_SNIPPET_LIMIT = 500


class GenerationState(str, Enum):
    IDLE = "Idle"
    SUBMITTING = "Submitting"
    POLLING = "Polling"
    READY = "Ready"
    FAILED = "Failed"


@dataclass
class GenerationOutcome:
    state: GenerationState
    video_url: Optional[str] = None
    error: Optional[VideoProxyError] = None
    poll_attempts: int = 0
    superseded: bool = False


StateListener = Callable[[GenerationState, Optional[str]], None]


class GenerationClient:
    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        listener: Optional[StateListener] = None,
    ):
        self.settings = settings or get_client_settings()
        self.base_url = validate_base_url(
            self.settings.base_url,
            self.settings.environment,
            self.settings.trusted_origins,
        ).rstrip("/")
        self._transport = transport
        self._sleep = sleep
        self._listener = listener

        self.state = GenerationState.IDLE
        self.video_url: Optional[str] = None
        self.error: Optional[VideoProxyError] = None

        self._generation = 0
        self._active: Optional[asyncio.Task] = None

    def video_proxy_url(self, video_uri: str) -> str:
        return f"{self.base_url}/video?uri={quote(video_uri, safe='')}"

    async def submit(
        self,
        prompt: str,
        aspect_ratio: str = AspectRatio.LANDSCAPE.value,
        api_key: Optional[str] = None,
    ) -> GenerationOutcome:
        """Run one submission to a terminal state.

        Input problems raise before any request is made and leave the state
        untouched. A submission replaced by a newer one returns an outcome
        with ``superseded=True``.
        """
        prompt = (prompt or "").strip()
        if not prompt:
            raise ValidationError("Please enter a video prompt.")
        try:
            ratio = AspectRatio(aspect_ratio)
        except ValueError:
            raise ValidationError(f"Unsupported aspect ratio: {aspect_ratio}") from None
        api_key = (api_key or "").strip() or None
        if self.settings.require_api_key and not api_key:
            raise AuthError("Please enter your API key.")

        if self._active is not None and not self._active.done():
            logger.info("Discarding previous submission in favour of a new one")
            self._active.cancel()

        self._generation += 1
        token = self._generation
        task = asyncio.ensure_future(self._run(token, prompt, ratio, api_key))
        self._active = task
        try:
            return await task
        except asyncio.CancelledError:
            if token != self._generation:
                return GenerationOutcome(state=GenerationState.FAILED, superseded=True)
            self._transition(token, GenerationState.IDLE)
            raise

    async def _run(
        self,
        token: int,
        prompt: str,
        aspect_ratio: AspectRatio,
        api_key: Optional[str],
    ) -> GenerationOutcome:
        self._transition(token, GenerationState.SUBMITTING)
        self.video_url = None
        self.error = None
        attempts = 0
        try:
            start = await self._start(prompt, aspect_ratio, api_key)
            video_url = start.get("videoUrl")
            if video_url:
                return self._ready(token, video_url, attempts)

            operation_name = start.get("operationName")
            if not operation_name:
                raise MalformedResponseError(
                    start.get("error") or "The API did not return a video URL.",
                    details={"body": str(start)[:BODY_SNIPPET_LIMIT]},
                )

            self._transition(token, GenerationState.POLLING)
            while attempts < self.settings.max_poll_attempts:
                await self._sleep(self.settings.poll_interval_seconds)
                attempts += 1
                status = await self._poll(operation_name)
                if not status.done:
                    continue
                if status.error:
                    raise UpstreamError(status.error, details={"operation": operation_name})
                return self._ready(token, self.video_proxy_url(status.video_uri), attempts)

            raise OperationTimeoutError(
                "Video generation did not finish in time. Please try again.",
                details={"operation": operation_name, "attempts": attempts},
            )
        except VideoProxyError as exc:
            return self._failed(token, exc, attempts)

    async def _start(
        self,
        prompt: str,
        aspect_ratio: AspectRatio,
        api_key: Optional[str],
    ) -> Dict[str, Any]:
        headers = {"x-api-key": api_key} if api_key else {}
        return await self._request(
            "POST",
            f"{self.base_url}/generate",
            self.settings.start_timeout_seconds,
            json={"prompt": prompt, "aspect_ratio": aspect_ratio.value},
            headers=headers,
        )

    async def _poll(self, operation_name: str) -> OperationStatus:
        payload = await self._request(
            "GET",
            f"{self.base_url}/operation",
            self.settings.status_timeout_seconds,
            params={"name": operation_name},
        )
        return OperationStatus.from_payload(payload)

    async def _request(self, method: str, url: str, timeout: float, **kwargs) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=self._transport) as client:
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.TimeoutException as exc:
                raise OperationTimeoutError(
                    "The request timed out. Please try again.", details={"url": url}
                ) from exc
            except httpx.HTTPError as exc:
                raise NetworkError(
                    "Network error or the request was blocked. Check the proxy address and try again.",
                    details={"url": url, "reason": str(exc)},
                ) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        details = {
            "url": str(response.request.url),
            "status": response.status_code,
            "body": response.text[:BODY_SNIPPET_LIMIT],
        }
        if response.is_error:
            raise error_for_status(response.status_code, extract_error_message(payload), details)
        if not isinstance(payload, dict):
            raise MalformedResponseError("The server returned an unexpected response.", details=details)
        return payload

    def _transition(self, token: int, state: GenerationState, detail: Optional[str] = None) -> None:
        if token != self._generation:
            return
        self.state = state
        if self._listener is not None:
            self._listener(state, detail)

    def _ready(self, token: int, video_url: str, attempts: int) -> GenerationOutcome:
        if token == self._generation:
            self.video_url = video_url
        self._transition(token, GenerationState.READY, video_url)
        logger.info("Video ready after %d status checks", attempts)
        return GenerationOutcome(state=GenerationState.READY, video_url=video_url, poll_attempts=attempts)

    def _failed(self, token: int, exc: VideoProxyError, attempts: int) -> GenerationOutcome:
        if token == self._generation:
            self.error = exc
        self._transition(token, GenerationState.FAILED, exc.message)
        logger.warning("Video generation failed (%s): %s", exc.kind, exc.message)
        return GenerationOutcome(state=GenerationState.FAILED, error=exc, poll_attempts=attempts)
