from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .backend import ImageBackend, build_backend
from .config import ServerConfig
from .history import HistoryLedger, HistoryRecorder
from .orchestrator import GenerationOrchestrator
from .storage import ArtifactWriter


@dataclass
class ServerContext:
    """Everything one server process owns; built once at startup."""

    config: ServerConfig
    backend: ImageBackend
    history: HistoryLedger
    orchestrator: GenerationOrchestrator

    async def close(self) -> None:
        await self.backend.close()


def build_context(
    config: ServerConfig,
    backend: Optional[ImageBackend] = None,
    history: Optional[HistoryLedger] = None,
) -> ServerContext:
    backend = backend or build_backend(config)
    history = history if history is not None else HistoryRecorder()
    orchestrator = GenerationOrchestrator(
        config=config,
        backend=backend,
        writer=ArtifactWriter(config.output_dir),
        history=history,
    )
    return ServerContext(config=config, backend=backend, history=history, orchestrator=orchestrator)
