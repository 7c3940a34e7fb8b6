from __future__ import annotations

import os
import sys
from typing import Optional, Sequence

from loguru import logger

from .config import ServerConfig, load_config
from .context import build_context


def configure_logging(level: str) -> None:
    # stdout carries the stdio protocol; logs go to stderr
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def log_startup(config: ServerConfig) -> None:
    logger.info("Starting Gemini Imagen server transport={}", config.transport)
    logger.info("Default model: {}", config.default_model)
    logger.info("Batch processing: {}", "enabled" if config.batch_processing else "disabled")
    logger.info("Max batch size: {}", config.max_batch_size)
    logger.info("Output directory: {}", config.output_dir)
    logger.info("Working directory: {}", os.getcwd())


def main(argv: Optional[Sequence[str]] = None) -> None:
    config = load_config(argv)
    configure_logging(config.log_level)
    log_startup(config)
    context = build_context(config)

    if config.transport == "http":
        import uvicorn

        from .main import create_app

        uvicorn.run(create_app(context), host=config.host, port=config.port)
        return

    from .mcp_server import build_mcp

    build_mcp(context).run()


if __name__ == "__main__":  # pragma: no cover
    main()
