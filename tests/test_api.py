"""
tests/test_api.py - HTTP surface of the publish broker.
"""

from core.config import Settings


START_BODY = {"appId": 123, "bundleHash": "abc", "bundleSize": 1024}


def start_job(client, auth_headers):
    response = client.post("/api/v1/publish/start", json=START_BODY, headers=auth_headers)
    assert response.status_code == 200
    return response.json()


class TestHealth:

    def test_health_needs_no_token(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["job_store_status"] == "connected"
        assert body["deployment_provider_status"] == "mock"
        assert body["active_pollers"] == 0

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_error_responses_documented(self, client):
        paths = client.get("/openapi.json").json()["paths"]

        responses = paths["/api/v1/publish/status"]["get"]["responses"]
        for code in ("400", "401", "404", "429", "502", "503"):
            schema = responses[code]["content"]["application/json"]["schema"]
            assert schema["$ref"] == "#/components/schemas/ErrorResponse"

    def test_auth_health(self, client, auth_headers):
        response = client.get("/api/health/auth", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["ok"] is True
        assert response.json()["auth"] == "ok"

        response = client.get("/api/health/auth")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized", "message": "Missing device token"}


class TestAuthGate:

    def test_missing_token(self, client):
        response = client.post("/api/v1/publish/start", json=START_BODY)
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized", "message": "Missing device token"}

    def test_wrong_token(self, client):
        response = client.post(
            "/api/v1/publish/start",
            json=START_BODY,
            headers={"x-abba-device-token": "nope"}
        )
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid device token"

    def test_server_not_configured(self, make_client, auth_headers):
        client = make_client(Settings(_env_file=None, ABBA_DEVICE_TOKEN=None, BROKER_VERCEL_TOKEN=None))

        response = client.post("/api/v1/publish/start", json=START_BODY, headers=auth_headers)

        assert response.status_code == 503
        assert response.json()["error"] == "BrokerMisconfigured"


class TestRateLimit:

    def test_rejects_over_limit_before_auth(self, make_client, test_settings):
        config = test_settings.model_copy(update={"RATE_LIMIT_REQUESTS": 2})
        client = make_client(config)
        headers = {"x-forwarded-for": "9.9.9.9"}

        assert client.get("/api/v1/publish/status?publishId=x", headers=headers).status_code == 401
        assert client.get("/api/v1/publish/status?publishId=x", headers=headers).status_code == 401

        response = client.get("/api/v1/publish/status?publishId=x", headers=headers)
        assert response.status_code == 429
        assert response.json()["error"] == "Too Many Requests"
        assert 1 <= int(response.headers["Retry-After"]) <= 60

        other = client.get("/api/v1/publish/status?publishId=x", headers={"x-forwarded-for": "8.8.8.8"})
        assert other.status_code == 401


class TestPublishFlow:

    def test_start(self, client, auth_headers):
        body = start_job(client, auth_headers)

        assert body["status"] == "queued"
        assert body["uploadUrl"] == f"/api/v1/publish/upload?publishId={body['publishId']}"

    def test_start_validation_error(self, client, auth_headers):
        response = client.post("/api/v1/publish/start", json={"appId": 123}, headers=auth_headers)

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Invalid request"
        assert body["details"]

    def test_degraded_publish_end_to_end(self, client, auth_headers, make_zip):
        job = start_job(client, auth_headers)

        response = client.put(
            job["uploadUrl"],
            content=make_zip({"app.js": "console.log('hi')"}),
            headers={**auth_headers, "content-type": "application/zip"}
        )
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["status"] == "ready"

        status = client.get(f"/api/v1/publish/status?publishId={job['publishId']}", headers=auth_headers)
        assert status.status_code == 200
        assert status.json() == {
            "status": "ready",
            "progress": 100,
            "message": "Your app is live!",
            "url": "https://mock-123.vercel.app",
        }

        complete = client.post("/api/v1/publish/complete", json={"publishId": job["publishId"]}, headers=auth_headers)
        assert complete.json()["success"] is True
        assert complete.json()["url"] == "https://mock-123.vercel.app"

        cancel = client.post("/api/v1/publish/cancel", json={"publishId": job["publishId"]}, headers=auth_headers)
        assert cancel.status_code == 200
        assert cancel.json()["success"] is False
        assert cancel.json()["status"] == "ready"

    def test_multipart_upload(self, client, auth_headers, make_zip):
        job = start_job(client, auth_headers)

        response = client.put(
            job["uploadUrl"],
            files={"bundle": ("bundle.zip", make_zip({"index.html": "ok"}), "application/zip")},
            headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_multipart_without_bundle_field(self, client, auth_headers, make_zip):
        job = start_job(client, auth_headers)

        response = client.put(
            job["uploadUrl"],
            files={"other": ("bundle.zip", make_zip({"index.html": "ok"}), "application/zip")},
            headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid request", "message": "No bundle file provided"}
        status = client.get(f"/api/v1/publish/status?publishId={job['publishId']}", headers=auth_headers)
        assert status.json()["status"] == "queued"

    def test_malformed_bundle_fails_job(self, client, auth_headers):
        job = start_job(client, auth_headers)

        response = client.put(job["uploadUrl"], content=b"not a zip", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Bundle rejected"
        status = client.get(f"/api/v1/publish/status?publishId={job['publishId']}", headers=auth_headers)
        assert status.json()["status"] == "failed"
        assert status.json()["progress"] == 0
        assert status.json()["error"].startswith("Failed to extract bundle:")

    def test_oversized_bundle(self, make_client, test_settings, auth_headers):
        client = make_client(test_settings.model_copy(update={"MAX_BUNDLE_SIZE": 8}))
        job = start_job(client, auth_headers)

        response = client.put(job["uploadUrl"], content=b"x" * 9, headers=auth_headers)

        assert response.status_code == 400
        assert response.json() == {
            "error": "Bundle rejected",
            "message": "Bundle too large: 9 bytes (max 8 bytes)",
        }
        status = client.get(f"/api/v1/publish/status?publishId={job['publishId']}", headers=auth_headers)
        assert status.json()["status"] == "failed"
        assert status.json()["error"] == "Bundle too large: 9 bytes (max 8 bytes)"

    def test_oversized_chunked_bundle(self, make_client, test_settings, auth_headers):
        client = make_client(test_settings.model_copy(update={"MAX_BUNDLE_SIZE": 8}))
        job = start_job(client, auth_headers)

        response = client.put(job["uploadUrl"], content=iter([b"x" * 5] * 4), headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["message"].startswith("Bundle too large:")
        status = client.get(f"/api/v1/publish/status?publishId={job['publishId']}", headers=auth_headers)
        assert status.json()["status"] == "failed"

    def test_oversized_multipart_bundle(self, make_client, test_settings, auth_headers):
        client = make_client(test_settings.model_copy(update={"MAX_BUNDLE_SIZE": 8}))
        job = start_job(client, auth_headers)

        response = client.put(
            job["uploadUrl"],
            files={"bundle": ("bundle.zip", b"x" * 9, "application/zip")},
            headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Bundle too large: 9 bytes (max 8 bytes)"

    def test_upload_twice(self, client, auth_headers, make_zip):
        job = start_job(client, auth_headers)
        bundle = make_zip({"index.html": "ok"})
        client.put(job["uploadUrl"], content=bundle, headers=auth_headers)

        response = client.put(job["uploadUrl"], content=bundle, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid state"

    def test_complete_before_upload(self, client, auth_headers):
        job = start_job(client, auth_headers)

        response = client.post("/api/v1/publish/complete", json={"publishId": job["publishId"]}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid state", "message": "Bundle not uploaded yet"}

    def test_cancel_queued_job(self, client, auth_headers):
        job = start_job(client, auth_headers)

        response = client.post("/api/v1/publish/cancel", json={"publishId": job["publishId"]}, headers=auth_headers)

        assert response.json() == {"success": True, "status": "cancelled"}
        status = client.get(f"/api/v1/publish/status?publishId={job['publishId']}", headers=auth_headers)
        assert status.json()["status"] == "cancelled"
        assert status.json()["message"] == "Publish cancelled"

    def test_unknown_job(self, client, auth_headers):
        response = client.get("/api/v1/publish/status?publishId=missing", headers=auth_headers)

        assert response.status_code == 404
        assert response.json() == {"error": "Not found", "message": "Publish job not found"}

    def test_missing_publish_id(self, client, auth_headers):
        response = client.get("/api/v1/publish/status", headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

        response = client.post("/api/v1/publish/cancel", json={}, headers=auth_headers)
        assert response.status_code == 400
