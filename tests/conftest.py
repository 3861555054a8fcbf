"""Shared pytest fixtures for the try-on combine tests."""

import os
import tempfile

# Keep test runs from writing a log file into the working directory
os.environ.setdefault("LOG_FILE", os.path.join(tempfile.gettempdir(), "tryon-tests.log"))

import base64
import json
from datetime import datetime, timedelta
from io import BytesIO
from typing import Callable, Generator, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from src.core.gemini import GeminiClient
from src.core.rate_limit import RateLimiter
from src.main import app
from src.routers.tryon.dependencies import (
    get_charge_failed_generations,
    get_generation_client,
    get_rate_limiter,
)

TEST_API_KEY = "AIzaSy" + "x" * 33
RESULT_IMAGE_B64 = base64.b64encode(b"generated-image-bytes").decode("utf-8")


class FakeClock:
    """Controllable replacement for ``datetime.now``."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 5, 14, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_image_bytes(width: int, height: int, fmt: str = "JPEG") -> bytes:
    """Render a solid-colour image of the given size."""
    if fmt == "PNG":
        image = Image.new("RGBA", (width, height), color=(200, 120, 40, 255))
    else:
        image = Image.new("RGB", (width, height), color=(200, 120, 40))
    buffer = BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def gemini_success_body(data: str = RESULT_IMAGE_B64, key: str = "inlineData") -> dict:
    if key == "text":
        part = {"text": data}
    else:
        mime_key = "mimeType" if key == "inlineData" else "mime_type"
        part = {key: {mime_key: "image/png", "data": data}}
    return {
        "candidates": [
            {"content": {"parts": [part], "role": "model"}, "finishReason": "STOP"}
        ]
    }


class GeminiStub:
    """Records requests and answers with a fixed response."""

    def __init__(self, status_code: int = 200, body=None, text: Optional[str] = None):
        self.status_code = status_code
        self.body = gemini_success_body() if body is None and text is None else body
        self.text = text
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text is not None:
            return httpx.Response(self.status_code, text=self.text)
        return httpx.Response(self.status_code, json=self.body)

    @property
    def last_payload(self) -> dict:
        return json.loads(self.requests[-1].content)

    def client(self, api_key: Optional[str] = TEST_API_KEY, **kwargs) -> GeminiClient:
        return GeminiClient(
            api_key=api_key,
            model="test-model",
            base_url="https://gemini.test/v1beta",
            timeout=5.0,
            transport=httpx.MockTransport(self),
            **kwargs,
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(
        soft_limit=30,
        hard_limit=40,
        global_daily_limit=400,
        delay_seconds=60,
        clock=clock,
    )


@pytest.fixture
def gemini_stub() -> GeminiStub:
    return GeminiStub()


@pytest.fixture
def small_jpeg() -> bytes:
    return make_image_bytes(64, 48, "JPEG")


@pytest.fixture
def override_dependencies(
    limiter: RateLimiter, gemini_stub: GeminiStub
) -> Generator[Callable[..., None], None, None]:
    """Point the app at the test limiter and the stubbed Gemini API."""

    def apply(client: Optional[GeminiClient] = None, charge_failed: bool = True) -> None:
        generation_client = client or gemini_stub.client()
        app.dependency_overrides[get_rate_limiter] = lambda: limiter
        app.dependency_overrides[get_generation_client] = lambda: generation_client
        app.dependency_overrides[get_charge_failed_generations] = lambda: charge_failed

    apply()
    yield apply
    app.dependency_overrides.clear()


@pytest.fixture
def test_client(override_dependencies) -> TestClient:
    return TestClient(app)
