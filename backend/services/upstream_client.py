import logging
from typing import Dict, Optional

import httpx

from backend.config import Settings
from backend.errors import AuthError, ConfigurationError, NetworkError, OperationTimeoutError, VideoProxyError

logger = logging.getLogger(__name__)

USER_AGENT = "veo-video-proxy/1.0"


def build_upstream_client(
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    follow_redirects: bool = True,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        headers={"User-Agent": USER_AGENT},
        follow_redirects=follow_redirects,
        transport=transport,
    )


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def resolve_credential(
    settings: Settings,
    body_key: Optional[str] = None,
    header_key: Optional[str] = None,
    authorization: Optional[str] = None,
) -> str:
    """Pick the upstream key: request body, then headers, then the server key."""
    for candidate in (body_key, header_key, _bearer_token(authorization), settings.api_key):
        if candidate and candidate.strip():
            return candidate.strip()
    raise AuthError(
        "Missing API key. Provide apiKey in the body, an x-api-key header, "
        "or configure GEMINI_API_KEY on the server."
    )


def require_server_credential(settings: Settings) -> str:
    if not settings.api_key:
        raise ConfigurationError("Server missing GEMINI_API_KEY")
    return settings.api_key


def auth_headers(settings: Settings, api_key: Optional[str]) -> Dict[str, str]:
    if not api_key:
        return {}
    if settings.upstream_mode == "direct":
        return {"Authorization": f"Bearer {api_key}"}
    return {"x-goog-api-key": api_key}


def translate_transport_error(exc: httpx.HTTPError, url: str) -> VideoProxyError:
    """Map an httpx transport failure onto the error taxonomy."""
    if isinstance(exc, httpx.TimeoutException):
        logger.warning("Upstream request timed out: %s", url)
        return OperationTimeoutError("Timed out waiting for the upstream service.", details={"url": url})
    logger.warning("Failed to contact upstream %s: %s", url, exc.__class__.__name__)
    return NetworkError("Proxy error contacting upstream", details={"url": url})
