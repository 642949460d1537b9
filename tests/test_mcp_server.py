"""
Integration tests for the knowledge tool server endpoints.

Uses the in-memory FakeIndex so tests do not require Milvus or an embeddings API.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import FakeIndex, make_hit
from tripmate.agent.capabilities import CapabilityRegistry
from tripmate.main import create_app


def _app(make_deps, index):
    app = create_app()
    app.state.deps = make_deps(index=index)
    return app


@pytest.fixture
def index() -> FakeIndex:
    return FakeIndex([make_hit("亚龙湾", "三亚", 0.82, rating=4.7), make_hit("宽窄巷子", "成都", 0.7)])


@pytest.fixture
def client(make_deps, index) -> TestClient:
    return TestClient(_app(make_deps, index))


def test_manifest_lists_knowledge_tools(client: TestClient) -> None:
    """GET /mcp/tools returns every tool with a parameters schema."""
    response = client.get("/mcp/tools")
    assert response.status_code == 200
    names = [t["name"] for t in response.json()]
    assert names == ["search_knowledge", "knowledge_stats"]
    assert all("parameters" in t for t in response.json())


def test_search_knowledge_returns_formatted_context(client: TestClient, index: FakeIndex) -> None:
    """POST /mcp/tools/search_knowledge returns the formatted references as output."""
    response = client.post("/mcp/tools/search_knowledge", json={"arguments": {"query": "三亚海滩", "city": "三亚"}})
    assert response.status_code == 200
    output = response.json()["output"]
    assert output.startswith("### Reference 1: 亚龙湾 (三亚)")
    assert index.searches[0]["city"] == "三亚"


def test_search_knowledge_empty_query(client: TestClient, index: FakeIndex) -> None:
    """An empty query is answered without touching the index."""
    response = client.post("/mcp/tools/search_knowledge", json={"arguments": {"query": "  "}})
    assert response.json() == {"output": "No query given."}
    assert index.searches == []


def test_knowledge_stats_tool(client: TestClient) -> None:
    response = client.post("/mcp/tools/knowledge_stats", json={})
    assert response.status_code == 200
    assert response.json()["output"] == f"Entries: 2\nCities (2): {', '.join(sorted(['三亚', '成都']))}"


def test_unknown_tool_returns_404(client: TestClient) -> None:
    response = client.post("/mcp/tools/book_hotel", json={"arguments": {}})
    assert response.status_code == 404
    assert response.json() == {"error": "Unknown tool: book_hotel"}


def test_missing_index_is_reported_as_error(make_deps) -> None:
    client = TestClient(_app(make_deps, None))
    response = client.post("/mcp/tools/search_knowledge", json={"arguments": {"query": "三亚"}})
    assert response.status_code == 200
    assert response.json() == {"error": "Knowledge index is not configured"}


def test_stats_failure_is_reported_as_error(make_deps) -> None:
    class BrokenIndex(FakeIndex):
        def stats(self):
            raise RuntimeError("milvus down")

    client = TestClient(_app(make_deps, BrokenIndex()))
    response = client.post("/mcp/tools/knowledge_stats", json={"arguments": {}})
    assert response.json() == {"error": "milvus down"}


@pytest.mark.asyncio
async def test_registry_consumes_tool_server(make_deps, index: FakeIndex) -> None:
    """CapabilityRegistry loads the manifest and invokes tools over HTTP as <server>_<tool>."""
    app = _app(make_deps, index)
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app))
    registry = CapabilityRegistry(mcp_servers={}, servers={"kb": "http://kb.test/mcp"}, http=http)
    try:
        await registry.ensure_initialized()
        tool = registry.get("kb_search_knowledge")
        assert tool is not None
        assert tool.display_name == "Search travel knowledge"
        output = await tool.invoke({"query": "成都景点", "city": "成都"})
    finally:
        await registry.shutdown()
        await http.aclose()

    assert "亚龙湾" in output
    assert index.searches[0] == {"query": "成都景点", "top_k": 3, "threshold": 0.65, "city": "成都"}
