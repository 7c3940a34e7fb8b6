import pytest
from httpx import ASGITransport, AsyncClient

from conftest import FakeImagenAPI
from imagen_server.config import ServerConfig
from imagen_server.context import build_context
from imagen_server.main import create_app


def _client(config: ServerConfig, fake_api: FakeImagenAPI) -> AsyncClient:
    app = create_app(build_context(config, backend=fake_api.backend()))
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_healthz(config: ServerConfig, fake_api: FakeImagenAPI) -> None:
    async with _client(config, fake_api) as client:
        resp = await client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {
        "status": "ok",
        "ready": True,
        "default_model": "imagen-4-ultra",
        "backend": "ImagenBackend",
    }


@pytest.mark.asyncio
async def test_tool_catalogue(config: ServerConfig, fake_api: FakeImagenAPI) -> None:
    async with _client(config, fake_api) as client:
        resp = await client.get("/tools")
    names = [tool["name"] for tool in resp.json()["tools"]]
    assert names == ["generate_image", "batch_generate", "list_models", "health_check"]


@pytest.mark.asyncio
async def test_generate_image_over_http(config: ServerConfig, fake_api: FakeImagenAPI) -> None:
    payload = {"prompt": "generate a futuristic city", "number_of_images": 2}
    async with _client(config, fake_api) as client:
        resp = await client.post("/tools/generate_image", json=payload)
        history = await client.get("/resources/history")

    assert resp.status_code == 200
    body = resp.json()
    assert body["isError"] is False
    assert len(body["content"]) == 3
    assert all(block["type"] == "text" for block in body["content"])
    assert [entry["image_count"] for entry in history.json()] == [2]


@pytest.mark.parametrize(
    "payload",
    [
        {"prompt": "x", "number_of_images": 5},
        {"prompt": "x", "aspect_ratio": "2:1"},
        {"prompt": "x", "model": "imagen-9"},
        {"prompt": ""},
    ],
)
@pytest.mark.asyncio
async def test_invalid_arguments_are_rejected(config: ServerConfig, fake_api: FakeImagenAPI, payload) -> None:
    async with _client(config, fake_api) as client:
        resp = await client.post("/tools/generate_image", json=payload)
    assert resp.status_code == 422
    assert fake_api.calls == []


@pytest.mark.asyncio
async def test_batch_disabled_over_http(config: ServerConfig, fake_api: FakeImagenAPI) -> None:
    disabled = config.model_copy(update={"batch_processing": False})
    async with _client(disabled, fake_api) as client:
        resp = await client.post("/tools/batch_generate", json={"prompts": ["a", "b"]})
    assert resp.status_code == 200
    assert resp.json()["isError"] is True
    assert fake_api.calls == []


@pytest.mark.asyncio
async def test_documentation_resource(config: ServerConfig, fake_api: FakeImagenAPI) -> None:
    async with _client(config, fake_api) as client:
        resp = await client.get("/resources/docs")
    assert resp.status_code == 200
    assert "batch_generate" in resp.text


@pytest.mark.asyncio
async def test_batch_with_empty_prompt_is_rejected(config: ServerConfig, fake_api: FakeImagenAPI) -> None:
    async with _client(config, fake_api) as client:
        resp = await client.post("/tools/batch_generate", json={"prompts": ["ok", ""]})
    assert resp.status_code == 422
    assert fake_api.calls == []
