from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ImagenModel = Literal["imagen-3", "imagen-4", "imagen-4-ultra"]
AspectRatio = Literal["1:1", "3:4", "4:3", "9:16", "16:9"]
PersonGeneration = Literal["dont_allow", "allow_adult", "allow_all"]
OutputFormat = Literal["image/jpeg", "image/png"]

IMAGEN_MODELS: dict[str, str] = {
    "imagen-3": "models/imagen-3.0-generate-002",
    "imagen-4": "models/imagen-4.0-generate-preview-06-06",
    "imagen-4-ultra": "models/imagen-4.0-ultra-generate-preview-06-06",
}


class GenerationParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: ImagenModel = "imagen-4-ultra"
    number_of_images: int = Field(default=1, ge=1, le=4)
    aspect_ratio: AspectRatio = "1:1"
    person_generation: PersonGeneration = "allow_adult"
    negative_prompt: Optional[str] = None
    seed: Optional[int] = None
    output_format: OutputFormat = "image/jpeg"

    def for_prompt(self, prompt: str) -> "GenerationRequest":
        return GenerationRequest(prompt=prompt, **self.model_dump())


class GenerationRequest(GenerationParams):
    prompt: str = Field(..., min_length=1)


@dataclass
class GenerationResult:
    request: GenerationRequest
    images: List[bytes] = field(default_factory=list)
    inference_seconds: float = 0.0


@dataclass(frozen=True)
class Artifact:
    path: Path
    size: int


class GenerationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: str
    prompt: str
    model: str
    number_of_images: int
    aspect_ratio: str
    person_generation: str
    negative_prompt: Optional[str] = None
    seed: Optional[int] = None
    image_count: int


class HistoryEntry(GenerationRecord):
    id: str


class ContentBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: List[ContentBlock] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @classmethod
    def text(cls, *texts: str, is_error: bool = False) -> "ToolResponse":
        return cls(content=[ContentBlock(text=t) for t in texts], is_error=is_error)


class GenerateImageArgs(BaseModel):
    prompt: str = Field(..., min_length=1, description="Text description of the image to generate")
    model: Optional[ImagenModel] = Field(default=None, description="Imagen model to use")
    number_of_images: int = Field(default=1, ge=1, le=4, description="Number of images to generate (1-4)")
    aspect_ratio: AspectRatio = Field(default="1:1", description="Image aspect ratio")
    person_generation: PersonGeneration = Field(default="allow_adult", description="Person generation policy")
    negative_prompt: Optional[str] = Field(default=None, description="What to avoid in the image")
    seed: Optional[int] = Field(default=None, description="Random seed for reproducible results")
    output_format: OutputFormat = Field(default="image/jpeg", description="Output image format")


class SharedSettings(BaseModel):
    aspect_ratio: AspectRatio = "1:1"
    person_generation: PersonGeneration = "allow_adult"
    output_format: OutputFormat = "image/jpeg"


class BatchGenerateArgs(BaseModel):
    prompts: List[Annotated[str, Field(min_length=1)]] = Field(
        ..., description="Array of text prompts for image generation"
    )
    model: Optional[ImagenModel] = Field(default=None, description="Imagen model to use for all images")
    shared_settings: SharedSettings = Field(default_factory=SharedSettings, description="Shared settings for all images")


class HealthResponse(BaseModel):
    status: str = "ok"
    ready: bool
    default_model: str
    backend: str
