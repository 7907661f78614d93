from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from backend.errors import MalformedResponseError, extract_error_message


class AspectRatio(str, Enum):
    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"


class GenerationRequest(BaseModel):
    prompt: str = Field(..., description="Text prompt describing the video")
    aspect_ratio: AspectRatio = Field(AspectRatio.LANDSCAPE, description="Output aspect ratio")
    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("apiKey", "api_key"),
        description="Per-request upstream credential; overrides the server key",
        repr=False,
    )


class StartResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    video_url: Optional[str] = Field(default=None, alias="videoUrl")
    operation_name: Optional[str] = Field(default=None, alias="operationName")
    error: Optional[str] = None


class OperationStatus(BaseModel):
    done: bool
    video_uri: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.done and self.video_uri is not None

    @classmethod
    def from_payload(cls, payload: Any) -> "OperationStatus":
        """Normalize an upstream long-running-operation body.

        Raises MalformedResponseError for a terminal operation that carries
        neither a video URI nor an error.
        """
        if not isinstance(payload, dict):
            raise MalformedResponseError("Operation status response was not a JSON object.")

        if not payload.get("done"):
            return cls(done=False)

        error = extract_error_message(payload)
        if error is None and payload.get("error"):
            error = "Video generation failed."
        if error:
            return cls(done=True, error=error)

        video_uri = _first_video_uri(payload.get("response"))
        if video_uri:
            return cls(done=True, video_uri=video_uri)

        raise MalformedResponseError(
            "Operation finished without a video URI or an error.",
            details={"operation": payload.get("name")},
        )


def _first_video_uri(response: Any) -> Optional[str]:
    if not isinstance(response, dict):
        return None
    generated = response.get("generateVideoResponse") or {}
    samples = generated.get("generatedSamples") if isinstance(generated, dict) else None
    if not isinstance(samples, list):
        return None
    for sample in samples:
        video = sample.get("video") if isinstance(sample, dict) else None
        uri = video.get("uri") if isinstance(video, dict) else None
        if isinstance(uri, str) and uri:
            return uri
    return None
