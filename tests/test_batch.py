import math

import pytest

from conftest import RecordingBackend
from imagen_server.batch import BatchScheduler, chunked
from imagen_server.errors import RemoteAPIError
from imagen_server.types import GenerationParams


def test_chunked_keeps_order_and_short_tail() -> None:
    assert [list(c) for c in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]


@pytest.mark.parametrize(("count", "batch_size"), [(1, 1), (3, 1), (4, 2), (5, 2), (7, 3), (8, 8), (9, 4)])
@pytest.mark.asyncio
async def test_chunks_run_in_sequence_with_bounded_concurrency(count: int, batch_size: int) -> None:
    backend = RecordingBackend()
    prompts = [f"prompt-{i}" for i in range(count)]

    results = await BatchScheduler(backend, batch_size).run(prompts, GenerationParams(model="imagen-3"))

    assert backend.waves == math.ceil(count / batch_size)
    assert backend.max_in_flight == min(count, batch_size)
    assert [result.request.prompt for result in results] == prompts
    assert all(result.request.model == "imagen-3" for result in results)


@pytest.mark.asyncio
async def test_failure_aborts_before_later_chunks() -> None:
    backend = RecordingBackend(fail_on={"p2"})
    prompts = ["p1", "p2", "p3", "p4", "p5"]

    with pytest.raises(RemoteAPIError):
        await BatchScheduler(backend, 2).run(prompts, GenerationParams())

    assert backend.started == ["p1", "p2"]
    assert "p3" not in backend.started


@pytest.mark.asyncio
async def test_failing_chunk_runs_to_completion() -> None:
    backend = RecordingBackend(fail_on={"a"})

    with pytest.raises(RemoteAPIError):
        await BatchScheduler(backend, 3).run(["a", "b", "c", "d"], GenerationParams())

    assert sorted(backend.completed) == ["b", "c"]
    assert backend.in_flight == 0


@pytest.mark.asyncio
async def test_empty_prompt_list_makes_no_calls() -> None:
    backend = RecordingBackend()
    assert await BatchScheduler(backend, 4).run([], GenerationParams()) == []
    assert backend.started == []


def test_batch_size_bounds() -> None:
    with pytest.raises(ValueError):
        BatchScheduler(RecordingBackend(), 0)
    with pytest.raises(ValueError):
        BatchScheduler(RecordingBackend(), 9)
