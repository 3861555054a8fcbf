"""Integration tests for the combine API.

All tests use the FastAPI TestClient with the Gemini API replaced by an
``httpx.MockTransport`` stub and the rate limiter driven by a fake clock:

- ``POST /api/v1/combine``: normalization, admission, generation, error mapping.
- ``GET /api/v1/ratelimit``: read-only limiter status.
- ``GET /api/v1/api-key/check``: credential verification.
- ``GET /api/v1/health``: liveness.
"""

import base64
from io import BytesIO

import httpx
from PIL import Image

from conftest import RESULT_IMAGE_B64, GeminiStub, make_image_bytes
from src.core.gemini import GeminiClient
from src.core.prompt_templates import DEFAULT_PROMPT

COMBINE_URL = "/api/v1/combine"


def _files(person: bytes, garment: bytes, person_type="image/jpeg", garment_type="image/jpeg"):
    return {
        "person": ("person.jpg", person, person_type),
        "garment": ("garment.jpg", garment, garment_type),
    }


# ---------------------------------------------------------------------------
# Combine endpoint tests.
# ---------------------------------------------------------------------------


class TestCombineSuccess:
    def test_two_small_jpegs_without_prompt(self, test_client, gemini_stub, small_jpeg):
        resp = test_client.post(COMBINE_URL, files=_files(small_jpeg, small_jpeg))

        assert resp.status_code == 200
        assert resp.json() == {"image": RESULT_IMAGE_B64}
        assert gemini_stub.last_payload["contents"][0]["parts"][2]["text"] == DEFAULT_PROMPT

    def test_custom_prompt_is_forwarded(self, test_client, gemini_stub, small_jpeg):
        resp = test_client.post(
            COMBINE_URL,
            files=_files(small_jpeg, small_jpeg),
            data={"prompt": "Put the jacket on the person."},
        )

        assert resp.status_code == 200
        parts = gemini_stub.last_payload["contents"][0]["parts"]
        assert parts[2]["text"] == "Put the jacket on the person."

    def test_blank_prompt_uses_default(self, test_client, gemini_stub, small_jpeg):
        resp = test_client.post(
            COMBINE_URL, files=_files(small_jpeg, small_jpeg), data={"prompt": "   "}
        )

        assert resp.status_code == 200
        assert gemini_stub.last_payload["contents"][0]["parts"][2]["text"] == DEFAULT_PROMPT

    def test_large_image_is_downscaled_before_sending(self, test_client, gemini_stub, small_jpeg):
        large = make_image_bytes(2048, 1536)

        resp = test_client.post(COMBINE_URL, files=_files(large, small_jpeg))

        assert resp.status_code == 200
        sent = gemini_stub.last_payload["contents"][0]["parts"][0]["inline_data"]["data"]
        assert Image.open(BytesIO(base64.b64decode(sent))).size == (1024, 768)

    def test_remaining_calls_header(self, test_client, small_jpeg):
        resp = test_client.post(COMBINE_URL, files=_files(small_jpeg, small_jpeg))

        assert resp.headers["X-RateLimit-Remaining"] == "29"


class TestCombineValidation:
    def test_missing_garment(self, test_client, gemini_stub, small_jpeg, limiter):
        resp = test_client.post(
            COMBINE_URL, files={"person": ("person.jpg", small_jpeg, "image/jpeg")}
        )

        assert resp.status_code == 400
        assert resp.json() == {"error": "Both person and garment images are required"}
        assert gemini_stub.requests == []
        assert limiter.get_stats().global_daily_count == 0

    def test_no_files(self, test_client):
        resp = test_client.post(COMBINE_URL, data={"prompt": "hello"})

        assert resp.status_code == 400

    def test_webp_person_is_labelled(self, test_client, small_jpeg, limiter):
        resp = test_client.post(
            COMBINE_URL, files=_files(b"RIFFxxxxWEBP", small_jpeg, person_type="image/webp")
        )

        assert resp.status_code == 400
        assert resp.json()["error"].startswith("Person image: WebP format not supported")
        assert limiter.get_stats().global_daily_count == 0

    def test_non_image_garment_is_labelled(self, test_client, small_jpeg):
        resp = test_client.post(
            COMBINE_URL, files=_files(small_jpeg, b"hello", garment_type="text/plain")
        )

        assert resp.status_code == 400
        assert resp.json()["error"] == "Garment image: File must be an image"

    def test_text_field_in_place_of_file(self, test_client, gemini_stub, small_jpeg, limiter):
        resp = test_client.post(
            COMBINE_URL,
            data={"person": "not-a-file"},
            files={"garment": ("garment.jpg", small_jpeg, "image/jpeg")},
        )

        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid value for: person"}
        assert gemini_stub.requests == []
        assert limiter.get_stats().global_daily_count == 0

    def test_oversized_upload(self, test_client, small_jpeg):
        too_big = b"\xff" * (4 * 1024 * 1024 + 10)

        resp = test_client.post(COMBINE_URL, files=_files(too_big, small_jpeg))

        assert resp.status_code == 400
        assert "Maximum size is 4MB" in resp.json()["error"]


class TestCombineRateLimiting:
    def test_thirty_first_rapid_request_is_delayed(
        self, test_client, gemini_stub, small_jpeg, clock
    ):
        for _ in range(30):
            resp = test_client.post(COMBINE_URL, files=_files(small_jpeg, small_jpeg))
            assert resp.status_code == 200
            clock.advance(seconds=1)

        resp = test_client.post(COMBINE_URL, files=_files(small_jpeg, small_jpeg))

        assert resp.status_code == 429
        body = resp.json()
        assert body["type"] == "delay"
        assert 1 <= body["retryAfter"] <= 60
        assert f"{body['retryAfter']} seconds" in body["error"]
        assert resp.headers["Retry-After"] == str(body["retryAfter"])
        assert len(gemini_stub.requests) == 30

    def test_hard_limit_is_limit_reached(self, test_client, gemini_stub, small_jpeg, limiter):
        for _ in range(40):
            limiter.record("testclient")

        resp = test_client.post(COMBINE_URL, files=_files(small_jpeg, small_jpeg))

        assert resp.status_code == 429
        body = resp.json()
        assert body["type"] == "limit_reached"
        assert "retryAfter" not in body
        assert gemini_stub.requests == []

    def test_identity_comes_from_forwarded_header(self, test_client, small_jpeg, limiter):
        for _ in range(40):
            limiter.record("203.0.113.9")

        blocked = test_client.post(
            COMBINE_URL,
            files=_files(small_jpeg, small_jpeg),
            headers={"X-Forwarded-For": "::ffff:203.0.113.9, 10.0.0.1"},
        )
        other = test_client.post(
            COMBINE_URL,
            files=_files(small_jpeg, small_jpeg),
            headers={"X-Real-IP": "203.0.113.10"},
        )

        assert blocked.status_code == 429
        assert other.status_code == 200

    def test_failed_generation_counts_by_default(
        self, override_dependencies, test_client, small_jpeg, limiter
    ):
        stub = GeminiStub(500, body={"error": {"message": "boom"}})
        override_dependencies(client=stub.client())

        resp = test_client.post(COMBINE_URL, files=_files(small_jpeg, small_jpeg))

        assert resp.status_code == 502
        assert limiter.get_stats().global_daily_count == 1

    def test_failed_generation_is_free_when_configured(
        self, override_dependencies, test_client, small_jpeg, limiter
    ):
        stub = GeminiStub(500, body={"error": {"message": "boom"}})
        override_dependencies(client=stub.client(), charge_failed=False)

        resp = test_client.post(COMBINE_URL, files=_files(small_jpeg, small_jpeg))

        assert resp.status_code == 502
        assert limiter.get_stats().global_daily_count == 0

    def test_success_counts_when_charging_on_success(
        self, override_dependencies, test_client, small_jpeg, limiter
    ):
        override_dependencies(charge_failed=False)

        resp = test_client.post(COMBINE_URL, files=_files(small_jpeg, small_jpeg))

        assert resp.status_code == 200
        assert limiter.get_stats().global_daily_count == 1


class TestCombineUpstreamErrors:
    def _post_with(self, override_dependencies, test_client, small_jpeg, stub):
        override_dependencies(client=stub.client())
        return test_client.post(COMBINE_URL, files=_files(small_jpeg, small_jpeg))

    def test_missing_key_is_configuration_error(
        self, override_dependencies, test_client, gemini_stub, small_jpeg, limiter
    ):
        override_dependencies(client=gemini_stub.client(api_key=None))

        resp = test_client.post(COMBINE_URL, files=_files(small_jpeg, small_jpeg))

        assert resp.status_code == 500
        assert resp.json() == {"error": "Service configuration error. Please check API key."}
        assert limiter.get_stats().global_daily_count == 0

    def test_html_error_page_is_bad_gateway(self, override_dependencies, test_client, small_jpeg):
        stub = GeminiStub(500, text="<!DOCTYPE html><html></html>")

        resp = self._post_with(override_dependencies, test_client, small_jpeg, stub)

        assert resp.status_code == 502
        assert "<html" not in resp.json()["error"]

    def test_safety_block_is_client_error(self, override_dependencies, test_client, small_jpeg):
        stub = GeminiStub(body={"candidates": [{"finishReason": "SAFETY"}]})

        resp = self._post_with(override_dependencies, test_client, small_jpeg, stub)

        assert resp.status_code == 400
        assert "safety" in resp.json()["error"]

    def test_missing_image_is_bad_gateway(self, override_dependencies, test_client, small_jpeg):
        stub = GeminiStub(body={"candidates": [{"content": {"parts": [{"text": "no"}]}}]})

        resp = self._post_with(override_dependencies, test_client, small_jpeg, stub)

        assert resp.status_code == 502
        assert resp.json() == {"error": "AI service returned invalid response. Please try again."}

    def test_unexpected_exception_is_generic(self, override_dependencies, test_client, small_jpeg):
        def explode(request):
            raise RuntimeError("secret internals")

        override_dependencies(
            client=GeminiClient(
                api_key="key",
                base_url="https://gemini.test/v1beta",
                transport=httpx.MockTransport(explode),
            )
        )

        resp = test_client.post(COMBINE_URL, files=_files(small_jpeg, small_jpeg))

        assert resp.status_code == 500
        assert resp.json() == {"error": "An unexpected error occurred. Please try again."}


# ---------------------------------------------------------------------------
# Status endpoint tests.
# ---------------------------------------------------------------------------


class TestRateLimitStatus:
    def test_fresh_caller(self, test_client):
        resp = test_client.get("/api/v1/ratelimit")

        assert resp.status_code == 200
        data = resp.json()
        assert data["allowed"] is True
        assert data["remaining_calls"] == 30
        assert data["global_remaining"] == 400
        assert data["stats"]["global_daily_count"] == 0

    def test_status_does_not_consume_quota(self, test_client, limiter):
        for _ in range(5):
            test_client.get("/api/v1/ratelimit")

        assert limiter.get_stats().global_daily_count == 0

    def test_delayed_caller(self, test_client, limiter):
        for _ in range(30):
            limiter.record("testclient")

        data = test_client.get("/api/v1/ratelimit").json()

        assert data["allowed"] is False
        assert data["outcome"] == "delay"
        assert data["retry_after"] == 60


class TestApiKeyCheck:
    def test_valid_key(self, override_dependencies, test_client):
        stub = GeminiStub(body={"models": [{"name": "models/gemini-2.5-flash-image-preview"}]})
        override_dependencies(client=stub.client())

        resp = test_client.get("/api/v1/api-key/check")

        assert resp.status_code == 200
        assert resp.json()["status"] == "success"
        assert resp.json()["models_count"] == 1

    def test_missing_key(self, override_dependencies, test_client, gemini_stub):
        override_dependencies(client=gemini_stub.client(api_key=None))

        resp = test_client.get("/api/v1/api-key/check")

        assert resp.status_code == 500
        assert resp.json() == {"error": "Service configuration error. Please check API key."}

    def test_bad_key_format_uses_error_body(self, override_dependencies, test_client, gemini_stub):
        override_dependencies(client=gemini_stub.client(api_key="not-a-key"))

        resp = test_client.get("/api/v1/api-key/check")

        assert resp.status_code == 500
        assert resp.json() == {"error": "Invalid API key format"}
        assert gemini_stub.requests == []

    def test_forbidden_key_is_bad_gateway(self, override_dependencies, test_client):
        stub = GeminiStub(403, body={"error": {"message": "forbidden"}})
        override_dependencies(client=stub.client())

        resp = test_client.get("/api/v1/api-key/check")

        assert resp.status_code == 502
        assert resp.json() == {"error": "API key is invalid or lacks permissions"}


def test_health(test_client):
    resp = test_client.get("/api/v1/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
