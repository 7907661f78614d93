import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from backend.config import Settings, get_settings
from backend.errors import VideoProxyError
from backend.models.schemas import GenerationRequest, StartResult
from backend.services import veo_service
from backend.services.upstream_client import resolve_credential

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_upstream_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transport used for upstream calls; None means the real network."""
    return None


def _http_error(exc: VideoProxyError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


@router.post("/generate", response_model=StartResult, response_model_exclude_none=True)
async def generate_video(
    payload: GenerationRequest,
    x_api_key: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_upstream_transport),
):
    prompt = (payload.prompt or "").strip()
    if not prompt:
        raise HTTPException(status_code=400, detail="Missing required field: prompt")

    if len(prompt) > settings.prompt_char_limit:
        raise HTTPException(
            status_code=400,
            detail=f"Prompt too long. Maximum {settings.prompt_char_limit} characters.",
        )

    try:
        api_key = resolve_credential(settings, payload.api_key, x_api_key, authorization)
        return await veo_service.start_generation(payload, api_key, settings, transport)
    except VideoProxyError as exc:
        raise _http_error(exc) from exc


@router.get("/operation")
async def get_operation(
    name: Optional[str] = Query(default=None),
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_upstream_transport),
):
    try:
        payload = await veo_service.fetch_operation(name, settings, transport)
    except VideoProxyError as exc:
        raise _http_error(exc) from exc
    return JSONResponse(content=payload)


@router.get("/video")
async def stream_video(
    uri: Optional[str] = Query(default=None),
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_upstream_transport),
):
    try:
        stream = await veo_service.open_video_stream(uri, settings, transport)
    except VideoProxyError as exc:
        logger.warning("Video proxy failed for %s: %s", uri, exc.message)
        raise _http_error(exc) from exc

    return StreamingResponse(
        stream.iter_bytes(),
        media_type=stream.content_type,
        background=BackgroundTask(stream.aclose),
    )


@router.get("/health")
def health_check(settings: Settings = Depends(get_settings)):
    return {"status": "ok", "mode": settings.upstream_mode}
