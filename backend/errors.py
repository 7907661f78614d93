from typing import Any, Dict, Optional


class VideoProxyError(Exception):
    """Base class for every failure surfaced by the proxy or the client."""

    kind = "VideoProxyError"
    status_code = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details: Dict[str, Any] = details or {}


class ValidationError(VideoProxyError):
    kind = "ValidationError"
    status_code = 400


class AuthError(VideoProxyError):
    kind = "AuthError"
    status_code = 401


class NotFoundError(VideoProxyError):
    kind = "NotFoundError"
    status_code = 404


class UpstreamError(VideoProxyError):
    kind = "UpstreamError"
    status_code = 502


class MalformedResponseError(VideoProxyError):
    kind = "MalformedResponseError"
    status_code = 502


class ConfigurationError(VideoProxyError):
    kind = "ConfigurationError"
    status_code = 500


class NetworkError(VideoProxyError):
    kind = "NetworkError"
    status_code = 502


class OperationTimeoutError(VideoProxyError):
    kind = "TimeoutError"
    status_code = 504


def default_message_for_status(status: int) -> str:
    if status == 401:
        return "Invalid or missing API key."
    if status == 403:
        return "Access denied. Check your API plan or permissions."
    if status == 429:
        return "Rate limit exceeded. Please try again later."
    if status >= 500:
        return "Upstream service unavailable. Please try again later."
    return f"Upstream error {status}"


def extract_error_message(payload: Any) -> Optional[str]:
    """Pull a human readable message out of an upstream JSON error body.

    Accepts both ``{"error": "text"}`` and the Google style
    ``{"error": {"code": 429, "message": "text"}}`` shapes.
    """
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, str) and error.strip():
        return error
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message.strip():
            return message
    return None


def error_for_status(
    status: int,
    message: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> VideoProxyError:
    message = message or default_message_for_status(status)
    if status == 400:
        error_cls = ValidationError
    elif status in (401, 403):
        error_cls = AuthError
    elif status == 404:
        error_cls = NotFoundError
    else:
        error_cls = UpstreamError
    return error_cls(message, status_code=status, details=details)
