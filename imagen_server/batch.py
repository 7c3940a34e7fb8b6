from __future__ import annotations

import asyncio
from typing import Iterator, List, Sequence, TypeVar

from loguru import logger

from .backend import ImageBackend
from .types import GenerationParams, GenerationResult

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    for start in range(0, len(items), size):
        yield items[start : start + size]


class BatchScheduler:
    """Run prompts through a backend in sequential chunks of concurrent calls.

    Every call in a chunk is awaited before the chunk is judged. If any call
    failed, the first failure in input order is raised and no further chunk
    is started, so callers get either every result or none.
    """

    def __init__(self, backend: ImageBackend, max_batch_size: int) -> None:
        if not 1 <= max_batch_size <= 8:
            raise ValueError("max_batch_size must be between 1 and 8")
        self.backend = backend
        self.max_batch_size = max_batch_size

    async def run(self, prompts: Sequence[str], params: GenerationParams) -> List[GenerationResult]:
        requests = [params.for_prompt(prompt) for prompt in prompts]
        chunk_size = min(len(requests), self.max_batch_size) or 1
        results: List[GenerationResult] = []

        for number, chunk in enumerate(chunked(requests, chunk_size), start=1):
            logger.info("Batch chunk {} dispatching {} request(s)", number, len(chunk))
            outcomes = await asyncio.gather(
                *(self.backend.generate(request) for request in chunk),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    logger.error("Batch chunk {} failed: {}", number, outcome)
                    raise outcome
            results.extend(outcomes)

        return results
