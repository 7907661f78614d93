import pytest

from backend.errors import MalformedResponseError
from backend.models.schemas import GenerationRequest, OperationStatus, StartResult


def _done(uri):
    return {
        "done": True,
        "response": {"generateVideoResponse": {"generatedSamples": [{"video": {"uri": uri}}]}},
    }


def test_pending_operation():
    assert OperationStatus.from_payload({"name": "op"}) == OperationStatus(done=False)
    assert OperationStatus.from_payload({"done": False}).succeeded is False


def test_finished_operation_extracts_first_uri():
    status = OperationStatus.from_payload(_done("https://upstream/v1"))

    assert status.done is True
    assert status.video_uri == "https://upstream/v1"
    assert status.succeeded is True


def test_finished_operation_is_stable_across_reads():
    payload = _done("https://upstream/v1")

    assert OperationStatus.from_payload(payload) == OperationStatus.from_payload(payload)


def test_error_string_and_object():
    assert OperationStatus.from_payload({"done": True, "error": "blocked"}).error == "blocked"
    status = OperationStatus.from_payload({"done": True, "error": {"code": 13, "message": "internal"}})
    assert status.error == "internal"
    assert status.succeeded is False


def test_error_without_message_gets_generic_text():
    status = OperationStatus.from_payload({"done": True, "error": {"code": 13}})

    assert status.error == "Video generation failed."


@pytest.mark.parametrize(
    "payload",
    [
        {"done": True},
        {"done": True, "response": {"generateVideoResponse": {"generatedSamples": []}}},
        {"done": True, "response": {"generateVideoResponse": {"generatedSamples": [{"video": {}}]}}},
        ["not", "a", "dict"],
    ],
)
def test_malformed_terminal_payloads(payload):
    with pytest.raises(MalformedResponseError):
        OperationStatus.from_payload(payload)


def test_generation_request_accepts_camel_case_key():
    request = GenerationRequest.model_validate({"prompt": "x", "apiKey": "secret"})

    assert request.api_key == "secret"
    assert request.aspect_ratio.value == "16:9"
    assert "secret" not in repr(request)


def test_start_result_serializes_with_wire_names():
    result = StartResult(success=True, operation_name="op123")

    assert result.model_dump(by_alias=True, exclude_none=True) == {"success": True, "operationName": "op123"}
