from __future__ import annotations

import asyncio
import base64
import json
from typing import Any, Callable

import httpx
import pytest

from imagen_server.backend import ImagenBackend
from imagen_server.config import ServerConfig
from imagen_server.errors import RemoteAPIError
from imagen_server.types import GenerationRequest, GenerationResult

API_BASE = "https://imagen.test/v1beta"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def prediction(data: bytes = PNG_BYTES) -> dict[str, str]:
    return {"bytesBase64Encoded": base64.b64encode(data).decode("ascii")}


class FakeImagenAPI:
    """Stands in for the remote predict endpoint via httpx.MockTransport."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.requests: list[httpx.Request] = []
        self.responder: Callable[[dict[str, Any]], httpx.Response] = self._images_per_sample_count

    @staticmethod
    def _images_per_sample_count(body: dict[str, Any]) -> httpx.Response:
        count = body["parameters"]["sampleCount"]
        return httpx.Response(200, json={"predictions": [prediction() for _ in range(count)]})

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(request)
        self.calls.append(body)
        return self.responder(body)

    def backend(self) -> ImagenBackend:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return ImagenBackend(api_key="test-key", api_base=API_BASE, client=client)


class RecordingBackend:
    """In-process backend that tracks concurrency and can fail chosen prompts."""

    def __init__(self, fail_on: set[str] | None = None, delay: float = 0.01) -> None:
        self.fail_on = fail_on or set()
        self.delay = delay
        self.started: list[str] = []
        self.completed: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.waves = 0

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        if self.in_flight == 0:
            self.waves += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.append(request.prompt)
        try:
            await asyncio.sleep(self.delay)
            if request.prompt in self.fail_on:
                raise RemoteAPIError.from_response(500, f"boom on {request.prompt}")
            self.completed.append(request.prompt)
            return GenerationResult(request=request, images=[request.prompt.encode()])
        finally:
            self.in_flight -= 1

    async def probe(self, model: str) -> int:
        return 200

    async def close(self) -> None:
        return None


@pytest.fixture
def fake_api() -> FakeImagenAPI:
    return FakeImagenAPI()


@pytest.fixture
def config(tmp_path) -> ServerConfig:
    return ServerConfig(
        api_key="test-key",
        api_base=API_BASE,
        output_dir=tmp_path / "imagen",
        batch_processing=True,
        max_batch_size=2,
    )
