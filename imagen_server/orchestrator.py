from __future__ import annotations

import asyncio
import json
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from loguru import logger

from .backend import ImageBackend
from .batch import BatchScheduler
from .config import ServerConfig
from .errors import ErrorCategory, FilesystemError, GenerationError, RemoteAPIError
from .history import HistoryLedger
from .storage import PROMPT_FRAGMENT_LENGTH, ArtifactWriter, artifact_filename, format_bytes
from .types import (
    Artifact,
    BatchGenerateArgs,
    GenerateImageArgs,
    GenerationParams,
    GenerationRecord,
    GenerationRequest,
    GenerationResult,
    ToolResponse,
)

NO_IMAGES_MESSAGE = "No images were generated. Please try a different prompt."
BATCH_DISABLED_MESSAGE = "Batch processing is disabled. Start server with --batch flag to enable."
NO_PROMPTS_MESSAGE = "No prompts provided for batch generation."

MODEL_INFO = {
    "imagen-3": {
        "name": "Imagen 3.0",
        "status": "Stable",
        "capabilities": ["Text-to-image", "High quality", "Fast generation"],
    },
    "imagen-4": {
        "name": "Imagen 4.0",
        "status": "Preview",
        "capabilities": ["Text-to-image", "Improved quality", "Better text rendering"],
    },
    "imagen-4-ultra": {
        "name": "Imagen 4.0 Ultra",
        "status": "Preview",
        "capabilities": ["Text-to-image", "Highest quality", "Best prompt adherence"],
    },
}

API_DOCUMENTATION = """# Gemini Imagen Server

Generates images with Google Gemini Imagen models and saves them under the
configured output directory (default `imagen/`) with descriptive filenames:
`{model}_{timestamp}_{prompt}_{index}.png`.

## Tools

### generate_image
- `prompt` (required): text description
- `model`: imagen-3, imagen-4, imagen-4-ultra
- `number_of_images`: 1-4
- `aspect_ratio`: 1:1, 3:4, 4:3, 9:16, 16:9
- `person_generation`: dont_allow, allow_adult, allow_all
- `negative_prompt`: what to avoid
- `seed`: for reproducible results
- `output_format`: image/jpeg, image/png

### batch_generate
- `prompts`: list of text prompts
- `model`: model for all images
- `shared_settings`: aspect_ratio, person_generation, output_format

Requires the server to be started with `--batch`. Prompts run concurrently in
groups of at most `--max-batch-size`.

### list_models
Available models and their capabilities.

### health_check
Server status plus a live probe of the Imagen API.

## Resources
- `history://generations`: generation history of this session (JSON)
- `docs://api`: this document

## Command line

```bash
GEMINI_API_KEY=... gemini-imagen-server --model imagen-4-ultra
gemini-imagen-server --batch --max-batch-size 8
gemini-imagen-server --output-dir custom-images
gemini-imagen-server --transport http --port 9001
```
"""

_CATEGORY_MESSAGES = {
    ErrorCategory.AUTHENTICATION: "Authentication failed: Please check your Gemini API key configuration",
    ErrorCategory.RATE_LIMIT: "Rate limit reached. Please try again later or upgrade your API plan",
    ErrorCategory.CONTENT_POLICY: "Content policy violation: The prompt was blocked by safety filters",
}


def error_message(exc: GenerationError, prefix: str) -> str:
    if isinstance(exc, RemoteAPIError) and exc.category in _CATEGORY_MESSAGES:
        return _CATEGORY_MESSAGES[exc.category]
    if isinstance(exc, FilesystemError):
        return f"Failed to save image: {exc}"
    return f"{prefix}: {exc}"


def display_path(path: Path) -> str:
    try:
        return os.path.relpath(path, Path.cwd())
    except ValueError:
        return str(path)


def artifact_text(artifact: Artifact) -> str:
    return f"Image saved to: {display_path(artifact.path)}\nSize: {format_bytes(artifact.size)}"


class GenerationOrchestrator:
    def __init__(
        self,
        config: ServerConfig,
        backend: ImageBackend,
        writer: ArtifactWriter,
        history: HistoryLedger,
    ) -> None:
        self.config = config
        self.backend = backend
        self.writer = writer
        self.history = history
        self.scheduler = BatchScheduler(backend, config.max_batch_size)
        self.started_at = time.monotonic()

    async def _persist(self, results: List[GenerationResult]) -> List[List[Artifact]]:
        """Write every image of ``results``; on failure, remove what was already written."""
        written: List[Artifact] = []
        per_result: List[List[Artifact]] = []
        try:
            for result in results:
                request = result.request
                artifacts: List[Artifact] = []
                for index, data in enumerate(result.images, start=1):
                    filename = artifact_filename(request.prompt, request.model, index)
                    artifact = await asyncio.to_thread(self.writer.write, data, filename)
                    artifacts.append(artifact)
                    written.append(artifact)
                per_result.append(artifacts)
        except FilesystemError:
            if written:
                logger.warning("Removing {} image(s) written before the failure", len(written))
                await asyncio.to_thread(self.writer.discard, written)
            raise
        return per_result

    def _record(self, request: GenerationRequest, image_count: int) -> str:
        return self.history.record(
            GenerationRecord(
                timestamp=datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
                prompt=request.prompt,
                model=request.model,
                number_of_images=request.number_of_images,
                aspect_ratio=request.aspect_ratio,
                person_generation=request.person_generation,
                negative_prompt=request.negative_prompt,
                seed=request.seed,
                image_count=image_count,
            )
        )

    async def generate_image(self, args: GenerateImageArgs) -> ToolResponse:
        request = GenerationRequest(
            **args.model_dump(exclude={"model"}),
            model=args.model or self.config.default_model,
        )
        try:
            result = await self.backend.generate(request)
            [artifacts] = await self._persist([result])
        except GenerationError as exc:
            logger.exception("Imagen generation failed for model {}", request.model)
            return ToolResponse.text(error_message(exc, "Error generating image"), is_error=True)

        self._record(request, len(result.images))
        if not artifacts:
            return ToolResponse.text(NO_IMAGES_MESSAGE)

        summary = (
            f"Generated {len(artifacts)} image(s) with {request.model}\n"
            f'Prompt: "{request.prompt}"\n'
            f"Aspect ratio: {request.aspect_ratio}"
        )
        if request.negative_prompt:
            summary += f'\nNegative prompt: "{request.negative_prompt}"'
        if request.seed is not None:
            summary += f"\nSeed: {request.seed}"

        return ToolResponse.text(summary, *(artifact_text(artifact) for artifact in artifacts))

    async def batch_generate(self, args: BatchGenerateArgs) -> ToolResponse:
        if not self.config.batch_processing:
            return ToolResponse.text(BATCH_DISABLED_MESSAGE, is_error=True)
        if not args.prompts:
            return ToolResponse.text(NO_PROMPTS_MESSAGE, is_error=True)

        model = args.model or self.config.default_model
        params = GenerationParams(model=model, number_of_images=1, **args.shared_settings.model_dump())
        texts = [
            f"Starting batch generation of {len(args.prompts)} images using {model}\n"
            f"Batch size: {self.config.max_batch_size}"
        ]

        try:
            results = await self.scheduler.run(args.prompts, params)
            persisted = await self._persist(results)
        except GenerationError as exc:
            logger.exception("Batch generation failed")
            return ToolResponse.text(error_message(exc, "Error in batch generation"), is_error=True)

        total = 0
        for number, (result, artifacts) in enumerate(zip(results, persisted), start=1):
            prompt = result.request.prompt
            label = prompt[:PROMPT_FRAGMENT_LENGTH] + ("..." if len(prompt) > PROMPT_FRAGMENT_LENGTH else "")
            if self.config.record_batch_history:
                self._record(result.request, len(result.images))
            if not artifacts:
                texts.append(f'Image {number}: "{label}"\n{NO_IMAGES_MESSAGE}')
                continue
            total += len(artifacts)
            texts.extend(f'Image {number}: "{label}"\n{artifact_text(artifact)}' for artifact in artifacts)

        texts.append(f"Batch generation completed\nTotal images generated: {total}")
        return ToolResponse.text(*texts)

    def list_models(self) -> ToolResponse:
        sections = [
            f"{info['name']} ({key})\n   Status: {info['status']}\n   Capabilities: {', '.join(info['capabilities'])}"
            for key, info in MODEL_INFO.items()
        ]
        body = "\n\n".join(sections)
        return ToolResponse.text(
            f"Available Imagen Models:\n\n{body}\n\nCurrent default model: {self.config.default_model}"
        )

    async def health_check(self) -> ToolResponse:
        key_configured = "Yes" if self.config.api_key else "No"
        try:
            status_code = await self.backend.probe(self.config.default_model)
        except GenerationError as exc:
            logger.warning("Health probe failed: {}", exc)
            return ToolResponse.text(
                "Server status: Issues detected\n"
                "API connected: No\n"
                f"API key configured: {key_configured}\n"
                f"Error: {exc}",
                is_error=True,
            )

        connected = "Yes" if status_code not in (401, 403) else "No"
        uptime = time.monotonic() - self.started_at
        return ToolResponse.text(
            "Server healthy\n"
            f"API connected: {connected}\n"
            f"API key configured: {key_configured}\n"
            f"Default model: {self.config.default_model}\n"
            f"Batch processing: {'Enabled' if self.config.batch_processing else 'Disabled'}\n"
            f"Images generated this session: {len(self.history)}\n"
            f"Output directory: {self.config.output_dir}\n"
            f"Working directory: {Path.cwd()}\n"
            f"Server uptime: {uptime:.0f}s"
        )

    def history_json(self) -> str:
        return json.dumps([entry.model_dump(mode="json") for entry in self.history.list()], indent=2)

    def documentation(self) -> str:
        return API_DOCUMENTATION
