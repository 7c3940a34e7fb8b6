from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from . import __version__
from .types import IMAGEN_MODELS, ImagenModel

IMAGEN_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

_TRUTHY = {"1", "true", "yes"}


class ServerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_key: str = ""
    default_model: ImagenModel = "imagen-4-ultra"
    batch_processing: bool = False
    max_batch_size: int = Field(default=4, ge=1, le=8)
    output_dir: Path = Path("imagen")
    api_base: str = IMAGEN_API_BASE
    request_timeout: float = Field(default=120.0, gt=0)
    backend: Literal["imagen", "stub"] = "imagen"
    record_batch_history: bool = False
    log_level: str = "INFO"
    transport: Literal["stdio", "http"] = "stdio"
    host: str = "127.0.0.1"
    port: int = Field(default=9001, ge=1, le=65535)


def _max_batch_size(value: str) -> int:
    try:
        size = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("max-batch-size must be between 1 and 8") from None
    if size < 1 or size > 8:
        raise argparse.ArgumentTypeError("max-batch-size must be between 1 and 8")
    return size


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gemini-imagen-server",
        description="Gemini Imagen generation server. Images are written under the output directory.",
        epilog="Environment: GEMINI_API_KEY (required unless IMAGEN_BACKEND=stub)",
    )
    parser.add_argument("--model", choices=list(IMAGEN_MODELS), help="Imagen model to use by default")
    parser.add_argument("--batch", action="store_true", default=None, help="Enable batch processing mode")
    parser.add_argument("--max-batch-size", type=_max_batch_size, help="Maximum batch size (1-8, default: 4)")
    parser.add_argument("--output-dir", help="Output directory for images (default: imagen)")
    parser.add_argument(
        "--record-batch-history",
        action="store_true",
        default=None,
        help="Also record batch generations in the session history",
    )
    parser.add_argument("--transport", choices=["stdio", "http"], help="Protocol transport (default: stdio)")
    parser.add_argument("--host", help="Bind address for the http transport")
    parser.add_argument("--port", type=int, help="Port for the http transport")
    parser.add_argument("-v", "--version", action="version", version=__version__)
    return parser


def load_config(argv: Optional[Sequence[str]] = None) -> ServerConfig:
    """Build the process configuration from defaults, environment and command line."""
    parser = build_parser()
    args = parser.parse_args(argv)

    values: dict[str, object] = {
        "api_key": os.getenv("GEMINI_API_KEY", ""),
        "backend": os.getenv("IMAGEN_BACKEND", "imagen").lower(),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
    }
    env_overrides = {
        "api_base": os.getenv("IMAGEN_API_BASE"),
        "request_timeout": os.getenv("IMAGEN_REQUEST_TIMEOUT"),
        "output_dir": os.getenv("IMAGEN_OUTPUT_DIR"),
        "port": os.getenv("PORT"),
    }
    values.update({key: value for key, value in env_overrides.items() if value})
    if os.getenv("IMAGEN_RECORD_BATCH_HISTORY", "").lower() in _TRUTHY:
        values["record_batch_history"] = True

    cli_overrides = {
        "default_model": args.model,
        "batch_processing": args.batch,
        "max_batch_size": args.max_batch_size,
        "output_dir": args.output_dir,
        "record_batch_history": args.record_batch_history,
        "transport": args.transport,
        "host": args.host,
        "port": args.port,
    }
    values.update({key: value for key, value in cli_overrides.items() if value is not None})

    if values["backend"] not in ("imagen", "stub"):
        parser.error(f"IMAGEN_BACKEND must be 'imagen' or 'stub', got {values['backend']!r}")
    if values["backend"] == "imagen" and not values["api_key"]:
        parser.error("GEMINI_API_KEY environment variable is required")

    try:
        return ServerConfig(**values)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        parser.error(f"invalid configuration: {problems}")
