from __future__ import annotations

from typing import Annotated, List, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from mcp.types import TextContent
from pydantic import Field

from .context import ServerContext
from .types import (
    AspectRatio,
    BatchGenerateArgs,
    GenerateImageArgs,
    ImagenModel,
    OutputFormat,
    PersonGeneration,
    SharedSettings,
    ToolResponse,
)


def _to_content(response: ToolResponse) -> List[TextContent]:
    """Flagged responses are raised so the client receives ``isError: true``."""
    if response.is_error:
        raise ToolError("\n\n".join(block.text for block in response.content))
    return [TextContent(type="text", text=block.text) for block in response.content]


def build_mcp(context: ServerContext) -> FastMCP:
    mcp = FastMCP("gemini-imagen")
    orchestrator = context.orchestrator

    @mcp.tool(name="generate_image", description="Generate images using Google Gemini Imagen models")
    async def generate_image(
        prompt: Annotated[str, Field(min_length=1)],
        model: Optional[ImagenModel] = None,
        number_of_images: Annotated[int, Field(ge=1, le=4)] = 1,
        aspect_ratio: AspectRatio = "1:1",
        person_generation: PersonGeneration = "allow_adult",
        negative_prompt: Optional[str] = None,
        seed: Optional[int] = None,
        output_format: OutputFormat = "image/jpeg",
    ) -> List[TextContent]:
        args = GenerateImageArgs(
            prompt=prompt,
            model=model,
            number_of_images=number_of_images,
            aspect_ratio=aspect_ratio,
            person_generation=person_generation,
            negative_prompt=negative_prompt,
            seed=seed,
            output_format=output_format,
        )
        return _to_content(await orchestrator.generate_image(args))

    @mcp.tool(
        name="batch_generate",
        description="Generate multiple images with different prompts using batch processing",
    )
    async def batch_generate(
        prompts: List[Annotated[str, Field(min_length=1)]],
        model: Optional[ImagenModel] = None,
        shared_settings: Optional[SharedSettings] = None,
    ) -> List[TextContent]:
        args = BatchGenerateArgs(prompts=prompts, model=model, shared_settings=shared_settings or SharedSettings())
        return _to_content(await orchestrator.batch_generate(args))

    @mcp.tool(name="list_models", description="List available Imagen models and their capabilities")
    async def list_models() -> List[TextContent]:
        return _to_content(orchestrator.list_models())

    @mcp.tool(name="health_check", description="Check server status and API connectivity")
    async def health_check() -> List[TextContent]:
        return _to_content(await orchestrator.health_check())

    @mcp.resource(
        "history://generations",
        name="generation_history",
        description="View recent image generation history",
        mime_type="application/json",
    )
    def generation_history() -> str:
        return orchestrator.history_json()

    @mcp.resource(
        "docs://api",
        name="api_documentation",
        description="API documentation and examples",
        mime_type="text/markdown",
    )
    def api_documentation() -> str:
        return orchestrator.documentation()

    return mcp
