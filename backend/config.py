import ipaddress
from functools import lru_cache
from typing import List, Literal, Optional
from urllib.parse import urlsplit

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from backend.errors import ValidationError

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    upstream_mode: Literal["operation", "direct"] = "operation"
    upstream_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    direct_upstream_base_url: str = "https://api.veo3.ai"
    veo_model: str = "veo-3.0-generate-001"

    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GEMINI_API_KEY", "API_KEY", "VEO3_API_KEY"),
        repr=False,
    )

    start_timeout_seconds: float = 60.0
    status_timeout_seconds: float = 30.0
    video_timeout_seconds: float = 120.0

    video_allowed_hosts: List[str] = ["generativelanguage.googleapis.com"]
    prompt_char_limit: int = 2400
    cors_allow_origins: List[str] = ["*"]

    app_host: str = "127.0.0.1"
    app_port: int = 8000
    log_level: str = "INFO"

    @field_validator("upstream_base_url", "direct_upstream_base_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return (value or "").rstrip("/")

    @field_validator("api_key", mode="before")
    @classmethod
    def blank_key_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @property
    def generate_base_url(self) -> str:
        if self.upstream_mode == "direct":
            return self.direct_upstream_base_url
        return self.upstream_base_url


class ClientSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="VIDEO_CLIENT_", env_file=".env", extra="ignore")

    base_url: str = "http://127.0.0.1:8000/api"
    environment: Literal["development", "production"] = "development"
    trusted_origins: List[str] = []

    poll_interval_seconds: float = 10.0
    max_poll_attempts: int = 60
    start_timeout_seconds: float = 60.0
    status_timeout_seconds: float = 30.0
    require_api_key: bool = False

    @field_validator("base_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return (value or "").rstrip("/")


def _is_loopback(host: str) -> bool:
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def validate_base_url(url: str, environment: str = "development", trusted_origins: Optional[List[str]] = None) -> str:
    """Check that the client is allowed to talk to ``url``.

    Development accepts any absolute http(s) URL. Production requires https,
    refuses loopback hosts and, when ``trusted_origins`` is set, refuses any
    origin not listed there.
    """
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ValidationError(f"Base URL must be an absolute http(s) URL: {url!r}")

    if environment != "production":
        return url

    if parts.scheme != "https":
        raise ValidationError("Production base URL must use https.")
    if _is_loopback(parts.hostname):
        raise ValidationError("Production client must not call a localhost address.")
    if trusted_origins:
        origin = f"{parts.scheme}://{parts.netloc}".lower()
        allowed = {item.rstrip("/").lower() for item in trusted_origins}
        if origin not in allowed:
            raise ValidationError(f"Origin {origin} is not a trusted origin.")
    return url


@lru_cache()
def get_settings() -> Settings:
    try:
        return Settings()
    except Exception as exc:
        raise RuntimeError("Failed to load application settings. Ensure your .env file is configured.") from exc


@lru_cache()
def get_client_settings() -> ClientSettings:
    try:
        return ClientSettings()
    except Exception as exc:
        raise RuntimeError("Failed to load client settings. Check the VIDEO_CLIENT_* variables.") from exc


settings = get_settings()
