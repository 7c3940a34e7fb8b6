from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from loguru import logger

from . import __version__
from .context import ServerContext
from .orchestrator import GenerationOrchestrator
from .types import BatchGenerateArgs, GenerateImageArgs, HealthResponse, HistoryEntry, ToolResponse

TOOLS: list[dict[str, str]] = [
    {"name": "generate_image", "description": "Generate images using Google Gemini Imagen models"},
    {"name": "batch_generate", "description": "Generate multiple images with different prompts using batch processing"},
    {"name": "list_models", "description": "List available Imagen models and their capabilities"},
    {"name": "health_check", "description": "Check server status and API connectivity"},
]


def create_app(context: ServerContext) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "imagen server starting default_model={} batch={} output_dir={}",
            context.config.default_model,
            context.config.batch_processing,
            context.config.output_dir,
        )
        yield
        logger.info("imagen server shutting down")
        await context.close()

    app = FastAPI(title="Gemini Imagen Server", version=__version__, lifespan=lifespan)
    app.state.context = context

    def _orchestrator(request: Request) -> GenerationOrchestrator:
        return request.app.state.context.orchestrator

    @app.get("/healthz", response_model=HealthResponse)
    async def healthz(request: Request) -> HealthResponse:
        ctx: ServerContext = request.app.state.context
        return HealthResponse(
            status="ok",
            ready=True,
            default_model=ctx.config.default_model,
            backend=ctx.backend.__class__.__name__,
        )

    @app.get("/tools")
    async def list_tools() -> dict[str, Any]:
        return {"tools": TOOLS}

    @app.post("/tools/generate_image", response_model=ToolResponse, response_model_by_alias=True)
    async def generate_image(args: GenerateImageArgs, request: Request) -> ToolResponse:
        return await _orchestrator(request).generate_image(args)

    @app.post("/tools/batch_generate", response_model=ToolResponse, response_model_by_alias=True)
    async def batch_generate(args: BatchGenerateArgs, request: Request) -> ToolResponse:
        return await _orchestrator(request).batch_generate(args)

    @app.post("/tools/list_models", response_model=ToolResponse, response_model_by_alias=True)
    async def list_models(request: Request) -> ToolResponse:
        return _orchestrator(request).list_models()

    @app.post("/tools/health_check", response_model=ToolResponse, response_model_by_alias=True)
    async def health_check(request: Request) -> ToolResponse:
        return await _orchestrator(request).health_check()

    @app.get("/resources/history", response_model=list[HistoryEntry])
    async def generation_history(request: Request) -> list[HistoryEntry]:
        return request.app.state.context.history.list()

    @app.get("/resources/docs", response_class=PlainTextResponse)
    async def api_documentation(request: Request) -> str:
        return _orchestrator(request).documentation()

    return app
