# tests/test_server.py
import os
import json
import time
import pytest
from unittest.mock import Mock, AsyncMock, patch

from fastmcp import Client
from fastmcp.exceptions import ToolError

from entity_rag.common.vector_store import Candidate
from entity_rag.common.web_search import WebResult
from entity_rag.ingest.uploader import DocumentUploader
from entity_rag.ingest.web_store import WebResultStore
from entity_rag.retriever.pipeline import RetrievalPipeline
from entity_rag.server.server import MCPServerApp

RIVERDALE_TEXT = (
    "Riverdale Heights is a small town in the northern valley. "
    "Current population is approximately 2,500 residents."
)


def _data(result):
    return getattr(result, "data", None) or getattr(result, "structured", None) \
        or getattr(result, "structured_content", None)


@pytest.fixture
def collaborators():
    embedding = Mock()
    embedding.embed_single.return_value = [0.1, 0.2, 0.3]
    embedding.embed.side_effect = lambda texts: [[0.1, 0.2, 0.3] for _ in texts]

    store = Mock()
    store.query.return_value = [
        Candidate("doc-1", 0.85, RIVERDALE_TEXT, {"entities": ["population", "residents"]}),
    ]
    store.upsert.side_effect = lambda docs: [d.id for d in docs]

    web_search = Mock()
    web_search.search = AsyncMock(return_value=[
        WebResult("Riverdale", "https://example.com/riverdale", "Town overview", content="Riverdale page"),
    ])
    return embedding, store, web_search


@pytest.fixture
def mcp_server(collaborators):
    """
    Create and return a FastMCP server instance for testing.
    Inject fakes to avoid real embedding, Qdrant and web search calls.
    """
    embedding, store, web_search = collaborators
    app = MCPServerApp(
        RetrievalPipeline(embedding, store),
        mcp_server_name="test-entity-rag",
        web_search=web_search,
        web_store=WebResultStore(embedding, store),
        uploader=DocumentUploader(embedding, store, dimension=3),
    )
    return app.mcp


@pytest.fixture
def mcp_server_degraded():
    """Server with no optional collaborators."""
    pipeline = RetrievalPipeline(None, None)
    return MCPServerApp(pipeline, mcp_server_name="test-degraded").mcp


@pytest.mark.asyncio
async def test_tools_registered(mcp_server):
    async with Client(mcp_server) as client:
        tools = await client.list_tools()
        names = {t.name for t in tools}
        assert names == {
            "enhanced_vector_rag",
            "web_search",
            "store_web_results",
            "file_upload",
            "ingest_texts",
            "process_document",
        }


# ----------- Enhanced Vector RAG ----------- #

@pytest.mark.asyncio
async def test_enhanced_vector_rag(mcp_server):
    async with Client(mcp_server) as client:
        result = await client.call_tool(
            "enhanced_vector_rag",
            {"query": "What is the population of Riverdale Heights?", "topK": 5},
        )
        data = _data(result)

        assert data is not None
        assert RIVERDALE_TEXT in data["relevantContext"]
        assert data["webSearchUsed"] is False
        assert data["sources"][0]["metadata"]["id"] == "doc-1"
        assert "population" in data["entities"]


@pytest.mark.asyncio
async def test_enhanced_vector_rag_rejects_empty_query(mcp_server):
    async with Client(mcp_server) as client:
        with pytest.raises(ToolError, match="query"):
            await client.call_tool("enhanced_vector_rag", {"query": "   "})


@pytest.mark.asyncio
async def test_enhanced_vector_rag_without_store_degrades(mcp_server_degraded):
    async with Client(mcp_server_degraded) as client:
        result = await client.call_tool("enhanced_vector_rag", {"query": "riverdale population"})
        data = _data(result)

        assert data["sources"][0]["id"] == "error"


@pytest.mark.asyncio
async def test_enhanced_vector_rag_timeout_with_slow_store(collaborators):
    embedding, store, web_search = collaborators

    def slow_query(vector, top_k):
        time.sleep(1.0)
        return [Candidate("doc-1", 0.85, RIVERDALE_TEXT)]

    store.query.side_effect = slow_query
    app = MCPServerApp(
        RetrievalPipeline(embedding, store),
        mcp_server_name="test-timeout",
        web_search=web_search,
        timeout_seconds=0.2,
    )

    async with Client(app.mcp) as client:
        started = time.monotonic()
        with pytest.raises(ToolError, match="timed out"):
            await client.call_tool("enhanced_vector_rag", {"query": "riverdale population"})
        assert time.monotonic() - started < 0.8

        # other tools keep answering while the store call is still running
        result = await client.call_tool("web_search", {"query": "riverdale"})
        assert _data(result)["totalResults"] == 1


# ----------- Web Search ----------- #

@pytest.mark.asyncio
async def test_web_search(mcp_server, collaborators):
    _, _, web_search = collaborators
    async with Client(mcp_server) as client:
        result = await client.call_tool("web_search", {"query": "riverdale", "maxResults": 3})
        data = _data(result)

        assert data["searchQuery"] == "riverdale"
        assert data["totalResults"] == 1
        assert data["results"][0]["url"] == "https://example.com/riverdale"
        web_search.search.assert_awaited_once_with("riverdale", 3)


@pytest.mark.asyncio
async def test_web_search_never_fails(mcp_server, collaborators):
    _, _, web_search = collaborators
    web_search.search.side_effect = RuntimeError("provider down")

    async with Client(mcp_server) as client:
        result = await client.call_tool("web_search", {"query": "riverdale"})
        data = _data(result)

        assert data["results"] == []
        assert data["totalResults"] == 0


@pytest.mark.asyncio
async def test_web_search_without_provider(mcp_server_degraded):
    async with Client(mcp_server_degraded) as client:
        result = await client.call_tool("web_search", {"query": "riverdale"})
        data = _data(result)

        assert data["totalResults"] == 0


# ----------- Store Web Results ----------- #

@pytest.mark.asyncio
async def test_store_web_results(mcp_server, collaborators):
    _, store, _ = collaborators
    async with Client(mcp_server) as client:
        result = await client.call_tool("store_web_results", {
            "searchResults": [
                {"title": "Riverdale", "url": "https://example.com/r", "snippet": "Town overview"},
            ],
            "originalQuery": "riverdale",
        })
        data = _data(result)

        assert data["storedCount"] == 1
        assert data["documentIds"][0].startswith("web_")
        docs = store.upsert.call_args.args[0]
        assert docs[0].metadata["userRequested"] is True


@pytest.mark.asyncio
async def test_store_web_results_not_requested(mcp_server, collaborators):
    _, store, _ = collaborators
    async with Client(mcp_server) as client:
        result = await client.call_tool("store_web_results", {
            "searchResults": [{"title": "Riverdale", "url": "https://example.com/r", "snippet": "s"}],
            "originalQuery": "riverdale",
            "userRequested": False,
        })
        data = _data(result)

        assert data["storedCount"] == 0
        assert "did not request" in data["message"]
        store.upsert.assert_not_called()


# ----------- File Upload / Process Document ----------- #

@pytest.mark.asyncio
async def test_file_upload(mcp_server, tmp_path):
    path = tmp_path / "notes.md"
    path.write_text("# Notes\n\nPopulation figures for the northern valley towns.")

    async with Client(mcp_server) as client:
        result = await client.call_tool("file_upload", {"filePath": str(path)})
        data = _data(result)

        assert data["success"] is True
        assert data["chunksCreated"] == 1


@pytest.mark.asyncio
async def test_file_upload_missing_file(mcp_server):
    async with Client(mcp_server) as client:
        result = await client.call_tool("file_upload", {"filePath": "/nonexistent.txt"})
        data = _data(result)

        assert data["success"] is False
        assert data["message"] == "File not found: /nonexistent.txt"


@pytest.mark.asyncio
async def test_file_upload_without_store(mcp_server_degraded, tmp_path):
    async with Client(mcp_server_degraded) as client:
        result = await client.call_tool("file_upload", {"filePath": str(tmp_path / "x.txt")})
        data = _data(result)

        assert data["success"] is False


@pytest.mark.asyncio
async def test_ingest_texts(mcp_server, collaborators):
    _, store, _ = collaborators
    async with Client(mcp_server) as client:
        result = await client.call_tool("ingest_texts", {
            "documents": [
                "Riverdale Heights population is about 2,500 residents.",
                "The valley river floods every spring.",
            ],
        })
        data = _data(result)

        assert data["success"] is True
        assert data["chunksCreated"] == 2
        assert store.upsert.call_count == 2
        assert store.upsert.call_args.args[0][0].metadata["source"] == "direct"


@pytest.mark.asyncio
async def test_ingest_texts_requires_documents(mcp_server):
    async with Client(mcp_server) as client:
        with pytest.raises(ToolError, match="documents"):
            await client.call_tool("ingest_texts", {"documents": []})


@pytest.mark.asyncio
async def test_ingest_texts_without_store(mcp_server_degraded):
    async with Client(mcp_server_degraded) as client:
        result = await client.call_tool("ingest_texts", {"documents": ["Riverdale valley notes"]})
        data = _data(result)

        assert data["success"] is False
        assert data["message"] == "Vector store not available"


@pytest.mark.asyncio
async def test_process_document(mcp_server):
    content = "\n\n".join(f"Paragraph {i} about the river valley." for i in range(20))

    async with Client(mcp_server) as client:
        result = await client.call_tool("process_document", {
            "content": content,
            "chunkSize": 200,
            "overlap": 0,
        })
        data = _data(result)

        assert data["success"] is True
        assert data["totalChunks"] == len(data["chunks"])
        assert data["totalChunks"] > 1
        assert data["chunks"][0]["metadata"]["index"] == 0


@pytest.mark.asyncio
async def test_process_document_invalid_json(mcp_server):
    async with Client(mcp_server) as client:
        result = await client.call_tool("process_document", {
            "content": "{broken",
            "contentType": "json",
            "strategy": "json",
        })
        data = _data(result)

        assert data["success"] is False
        assert "Invalid JSON" in data["error"]


# ----------- Entry Point ----------- #

def test_apply_args_local_store():
    from entity_rag.common.config import EntityRagConfig
    from entity_rag.server.server import _apply_args, _parse_args

    config = _apply_args(EntityRagConfig(), _parse_args(["--local", "--index-name", "kb"]))

    assert config.vector_store.url == ""
    assert config.vector_store.path == ""
    assert config.vector_store.index_name == "kb"


def test_main_save_config(tmp_path):
    from entity_rag.server.server import main

    config_dir = tmp_path / "cfg"
    with patch("entity_rag.common.config.CONFIG_DIR", config_dir), \
         patch("entity_rag.common.config.CONFIG_PATH", config_dir / "config.json"), \
         patch("entity_rag.common.config.LOGS_DIR", config_dir / "logs"), \
         patch("entity_rag.common.config.STORAGE_DIR", config_dir / "qdrant"), \
         patch("entity_rag.server.server.load_dotenv"), \
         patch("entity_rag.server.server.VectorStoreClient") as store_cls, \
         patch.dict(os.environ, {}, clear=True):
        main(["--save-config", "--index-name", "kb", "--web-search-provider", "none"])

    saved = json.loads((config_dir / "config.json").read_text())
    assert saved["vector_store"]["index_name"] == "kb"
    assert saved["web_search"]["provider"] == "none"
    assert (config_dir / "logs").is_dir()
    assert (config_dir / "qdrant").is_dir()
    store_cls.from_config.assert_not_called()
