from __future__ import annotations

import asyncio
import base64
import binascii
import io
import time
from typing import Any, Protocol

import httpx
from loguru import logger

from .config import ServerConfig
from .errors import RemoteAPIError
from .types import IMAGEN_MODELS, GenerationRequest, GenerationResult


class ImageBackend(Protocol):
    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Issue one generation call and return the decoded image payloads."""

    async def probe(self, model: str) -> int:
        """Send a minimal request and return the upstream status code."""

    async def close(self) -> None: ...


def build_request_body(request: GenerationRequest) -> dict[str, Any]:
    instance: dict[str, Any] = {"prompt": request.prompt}
    if request.negative_prompt:
        instance["negativePrompt"] = request.negative_prompt

    parameters: dict[str, Any] = {
        "outputMimeType": request.output_format,
        "sampleCount": request.number_of_images,
        "personGeneration": request.person_generation,
        "aspectRatio": request.aspect_ratio,
    }
    if request.seed is not None:
        parameters["seed"] = request.seed

    return {"instances": [instance], "parameters": parameters}


class ImagenBackend:
    def __init__(
        self,
        api_key: str,
        api_base: str,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=10.0))
        return self._client

    def _predict_url(self, model: str) -> str:
        return f"{self.api_base}/{IMAGEN_MODELS[model]}:predict"

    async def _post(self, model: str, body: dict[str, Any]) -> httpx.Response:
        client = await self._ensure_client()
        try:
            return await client.post(self._predict_url(model), params={"key": self.api_key}, json=body)
        except httpx.HTTPError as exc:
            logger.error("Imagen request to {} failed: {}", model, exc)
            raise RemoteAPIError(f"API request failed: {exc}") from exc

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        start = time.perf_counter()
        response = await self._post(request.model, build_request_body(request))
        elapsed = time.perf_counter() - start

        if not response.is_success:
            logger.error("Imagen returned status {} for model {}", response.status_code, request.model)
            raise RemoteAPIError.from_response(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteAPIError(
                "API returned a response that is not JSON",
                status_code=response.status_code,
                body=response.text,
            ) from exc

        predictions = data.get("predictions") if isinstance(data, dict) else None
        predictions = predictions or []
        if not isinstance(predictions, list):
            raise RemoteAPIError(
                "API returned predictions that are not a list",
                status_code=response.status_code,
                body=response.text,
            )
        images: list[bytes] = []
        for idx, prediction in enumerate(predictions):
            encoded = prediction.get("bytesBase64Encoded") if isinstance(prediction, dict) else None
            if not encoded:
                logger.warning("Imagen prediction {} has no image bytes, skipping", idx)
                continue
            try:
                images.append(base64.b64decode(encoded, validate=True))
            except (binascii.Error, ValueError) as exc:
                raise RemoteAPIError(
                    f"Prediction {idx} is not valid base64",
                    status_code=response.status_code,
                ) from exc

        logger.debug(
            "Imagen returned {} image(s) for model={} in {:.2f}s",
            len(images),
            request.model,
            elapsed,
        )
        return GenerationResult(request=request, images=images, inference_seconds=elapsed)

    async def probe(self, model: str) -> int:
        probe_request = GenerationRequest(prompt="test", model=model)
        response = await self._post(model, build_request_body(probe_request))
        return response.status_code

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


class StubBackend:
    """Offline backend that draws placeholder PNGs; useful for smoke tests."""

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        from PIL import Image, ImageDraw

        start = time.perf_counter()
        if self.latency:
            await asyncio.sleep(self.latency)

        images: list[bytes] = []
        for idx in range(request.number_of_images):
            img = Image.new("RGB", (256, 256), color=(73, 109, 137))
            d = ImageDraw.Draw(img)
            d.rectangle([24, 24, 232, 232], outline=(255, 255, 255), width=3)
            d.text((36, 36), f"Stub {idx + 1}: {request.prompt[:24]}", fill=(255, 255, 255))
            buffer = io.BytesIO()
            img.save(buffer, format="PNG")
            images.append(buffer.getvalue())

        logger.warning("Using stub backend for prompt {!r} (no remote API configured)", request.prompt[:32])
        return GenerationResult(request=request, images=images, inference_seconds=time.perf_counter() - start)

    async def probe(self, model: str) -> int:
        return 200

    async def close(self) -> None:
        return None


def build_backend(config: ServerConfig) -> ImageBackend:
    if config.backend == "stub":
        logger.warning("IMAGEN_BACKEND=stub: images are placeholders")
        return StubBackend()

    logger.info("Using Imagen backend at {}", config.api_base)
    return ImagenBackend(api_key=config.api_key, api_base=config.api_base, timeout=config.request_timeout)
