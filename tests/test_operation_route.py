import httpx

OPERATION = "models/veo-3.0-generate-001/operations/op123"

DONE_PAYLOAD = {
    "name": OPERATION,
    "done": True,
    "response": {"generateVideoResponse": {"generatedSamples": [{"video": {"uri": "https://upstream/v1"}}]}},
}


def test_pending_operation_relayed(api, upstream):
    upstream.handler = lambda request: httpx.Response(200, json={"name": OPERATION, "done": False})

    response = api.get("/api/operation", params={"name": OPERATION})

    assert response.status_code == 200
    assert response.json() == {"name": OPERATION, "done": False}
    sent = upstream.last
    assert sent.url.path == f"/v1beta/{OPERATION}"
    assert sent.headers["x-goog-api-key"] == "server-key"


def test_done_operation_relayed_verbatim(api, upstream):
    upstream.handler = lambda request: httpx.Response(200, json=DONE_PAYLOAD)

    response = api.get("/api/operation", params={"name": OPERATION})

    assert response.status_code == 200
    assert response.json() == DONE_PAYLOAD


def test_done_operation_is_idempotent(api, upstream):
    upstream.handler = lambda request: httpx.Response(200, json=DONE_PAYLOAD)

    first = api.get("/api/operation", params={"name": OPERATION}).json()
    second = api.get("/api/operation", params={"name": OPERATION}).json()

    assert first == second == DONE_PAYLOAD
    assert all(request.method == "GET" for request in upstream.requests)


def test_done_without_uri_or_error_is_malformed(api, upstream):
    upstream.handler = lambda request: httpx.Response(200, json={"name": OPERATION, "done": True, "response": {}})

    response = api.get("/api/operation", params={"name": OPERATION})

    assert response.status_code == 502
    assert "without a video URI" in response.json()["error"]


def test_done_with_error_is_relayed(api, upstream):
    payload = {"name": OPERATION, "done": True, "error": {"code": 3, "message": "Prompt blocked"}}
    upstream.handler = lambda request: httpx.Response(200, json=payload)

    response = api.get("/api/operation", params={"name": OPERATION})

    assert response.status_code == 200
    assert response.json() == payload


def test_missing_name_is_400(api, upstream):
    response = api.get("/api/operation")

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Missing operation name"}
    assert upstream.requests == []


def test_traversal_name_is_400(api, upstream):
    response = api.get("/api/operation", params={"name": "../../files/secret"})

    assert response.status_code == 400
    assert upstream.requests == []


def test_missing_server_credential_is_500(api, upstream, settings, use_settings):
    use_settings(settings.model_copy(update={"api_key": None}))

    response = api.get("/api/operation", params={"name": OPERATION})

    assert response.status_code == 500
    assert response.json()["error"] == "Server missing GEMINI_API_KEY"
    assert upstream.requests == []


def test_upstream_status_passes_through(api, upstream):
    upstream.handler = lambda request: httpx.Response(404, json={"error": {"message": "Operation not found"}})

    response = api.get("/api/operation", params={"name": OPERATION})

    assert response.status_code == 404
    assert response.json()["error"] == "Operation not found"


def test_wrong_method_is_405(api):
    response = api.post("/api/operation", params={"name": OPERATION})

    assert response.status_code == 405
