"""
Tests for ingestion

Tests chunking, file upload and web result storage.
"""

import json
import pytest
from unittest.mock import Mock


@pytest.fixture
def embedding():
    embedding = Mock()
    embedding.embed.side_effect = lambda texts: [[0.1, 0.2, 0.3] for _ in texts]
    return embedding


@pytest.fixture
def store():
    store = Mock()
    store.upsert.side_effect = lambda docs: [d.id for d in docs]
    store.create_index.return_value = True
    return store


class TestDocumentChunker:
    """Tests for DocumentChunker"""

    @pytest.fixture
    def chunker(self):
        from entity_rag.ingest.chunker import DocumentChunker
        return DocumentChunker()

    def test_recursive_chunks_respect_size(self, chunker):
        content = "\n\n".join(f"Paragraph {i} about the river valley and its towns." for i in range(30))

        chunks = chunker.chunk(content, chunk_size=200, overlap=20)

        assert len(chunks) > 1
        assert [c.index for c in chunks] == list(range(len(chunks)))
        for chunk in chunks:
            assert len(chunk.text) <= 200
            assert chunk.start_offset >= 0
            assert content[chunk.start_offset:chunk.start_offset + len(chunk.text)] == chunk.text
            assert chunk.metadata["contentType"] == "text"
            assert chunk.metadata["strategy"] == "recursive"

    def test_character_strategy(self, chunker):
        content = "\n".join(f"line {i} of the census report" for i in range(40))

        chunks = chunker.chunk(content, chunk_size=120, overlap=0, strategy="character")

        assert len(chunks) > 1
        assert all(len(c.text) <= 120 for c in chunks)

    def test_markdown_strategy_keeps_headers(self, chunker):
        content = "# Riverdale\n\nA small town.\n\n## Population\n\nAbout 2,500 residents."

        chunks = chunker.chunk(content, content_type="markdown", strategy="markdown")

        population = [c for c in chunks if "2,500" in c.text]
        assert population
        assert population[0].metadata["h1"] == "Riverdale"
        assert population[0].metadata["h2"] == "Population"

    def test_json_strategy(self, chunker):
        content = json.dumps({"town": {"name": "Riverdale", "population": 2500}, "tags": ["a", "b"]})

        chunks = chunker.chunk(content, content_type="json", chunk_size=512, overlap=0, strategy="json")

        assert chunks
        for chunk in chunks:
            json.loads(chunk.text)

    def test_invalid_json(self, chunker):
        with pytest.raises(ValueError, match="Invalid JSON"):
            chunker.chunk("{broken", content_type="json", strategy="json")

    @pytest.mark.parametrize("kwargs", [
        {"strategy": "token"},
        {"content_type": "pdf"},
        {"chunk_size": 0},
        {"chunk_size": 100, "overlap": 100},
        {"overlap": -1},
    ])
    def test_rejects_bad_arguments(self, chunker, kwargs):
        with pytest.raises(ValueError):
            chunker.chunk("some content", **kwargs)

    def test_empty_content(self, chunker):
        assert chunker.chunk("   \n ") == []

    def test_detect_content_type(self):
        from entity_rag.ingest.chunker import detect_content_type

        assert detect_content_type("notes.md") == "markdown"
        assert detect_content_type("NOTES.MARKDOWN") == "markdown"
        assert detect_content_type("data.json") == "json"
        assert detect_content_type("readme.txt") == "text"
        assert detect_content_type("Makefile") == "text"


class TestDocumentUploader:
    """Tests for DocumentUploader"""

    @pytest.fixture
    def uploader(self, embedding, store):
        from entity_rag.ingest.uploader import DocumentUploader
        return DocumentUploader(embedding, store, dimension=3)

    def test_upload_markdown_file(self, uploader, store, tmp_path):
        path = tmp_path / "riverdale.md"
        path.write_text(
            "# Riverdale Heights\n\n"
            "Riverdale Heights is a small town in the northern valley. "
            "Current population is approximately 2,500 residents in total.\n"
        )

        result = uploader.upload_file(str(path))

        assert result.success is True
        assert result.chunks_created == 1
        assert result.embeddings_generated == 1
        assert result.entities_extracted > 0
        store.create_index.assert_called_once_with(3)

        docs = store.upsert.call_args.args[0]
        assert len(docs) == 1
        metadata = docs[0].metadata
        assert metadata["contentType"] == "markdown"
        assert metadata["source"] == str(path)
        assert metadata["chunkSize"] == 512
        assert metadata["overlap"] == 50
        assert "population" in metadata["entities"]
        assert "residents" in metadata["entities"]
        assert len(metadata["entities"]) <= 10
        assert docs[0].text.startswith("# Riverdale Heights")

    def test_reupload_reuses_ids(self, uploader, store, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("Population figures for the northern valley towns and villages.")

        uploader.upload_file(str(path))
        first_ids = [d.id for d in store.upsert.call_args.args[0]]
        uploader.upload_file(str(path))
        second_ids = [d.id for d in store.upsert.call_args.args[0]]

        assert first_ids == second_ids

    def test_entities_capped(self, embedding, store, tmp_path):
        from entity_rag.ingest.uploader import DocumentUploader

        uploader = DocumentUploader(embedding, store, max_entities=3)
        path = tmp_path / "words.txt"
        path.write_text("alpha bravo charlie delta foxtrot golf hotel india juliet kilo lima mike")

        uploader.upload_file(str(path))

        docs = store.upsert.call_args.args[0]
        assert docs[0].metadata["entities"] == ["alpha", "bravo", "charlie"]

    def test_missing_file(self, uploader, store):
        result = uploader.upload_file("/nonexistent/file.txt")

        assert result.success is False
        assert result.message == "File not found: /nonexistent/file.txt"
        assert result.chunks_created == 0
        store.upsert.assert_not_called()

    def test_store_failure_is_reported(self, uploader, store, tmp_path):
        from entity_rag.common.errors import TransientIOError

        store.upsert.side_effect = TransientIOError("disk full")
        path = tmp_path / "notes.txt"
        path.write_text("Population figures for the northern valley towns.")

        result = uploader.upload_file(str(path))

        assert result.success is False
        assert "disk full" in result.message

    def test_existing_index_is_tolerated(self, uploader, store, tmp_path):
        from entity_rag.common.errors import TransientIOError

        store.create_index.side_effect = TransientIOError("already exists")
        path = tmp_path / "notes.txt"
        path.write_text("Population figures for the northern valley towns.")

        result = uploader.upload_file(str(path))

        assert result.success is True
        store.upsert.assert_called_once()

    def test_ingest_texts(self, uploader, store):
        result = uploader.ingest_texts([
            "Riverdale Heights population is about 2,500 residents.",
            "The valley river floods every spring.",
            "",
        ])

        assert result.success is True
        assert result.chunks_created == 2
        assert result.embeddings_generated == 2
        assert store.upsert.call_count == 2
        data = result.to_dict()
        assert data["chunksCreated"] == 2

    def test_ingest_texts_extracts_each_chunk_once(self, embedding, store):
        from entity_rag.ingest.uploader import DocumentUploader
        from entity_rag.retriever.entity_extractor import EntityExtractor

        extractor = Mock(wraps=EntityExtractor())
        uploader = DocumentUploader(embedding, store, extractor=extractor)

        result = uploader.ingest_texts([
            "Riverdale Heights population is about 2,500 residents.",
            "The valley river floods every spring.",
        ])

        assert extractor.extract.call_count == 2
        # riverdale, heights, population, valley, river, floods, every
        assert result.entities_extracted == 7


class TestWebResultStore:
    """Tests for WebResultStore"""

    @pytest.fixture
    def web_store(self, embedding, store):
        from entity_rag.ingest.web_store import WebResultStore
        return WebResultStore(embedding, store)

    @pytest.fixture
    def results(self):
        from entity_rag.common.web_search import WebResult
        return [
            WebResult("Riverdale", "https://example.com/1", "Town overview", content="Riverdale full text"),
            WebResult("Census", "https://example.com/2", "Population 2,500"),
        ]

    def test_not_requested(self, web_store, store, results):
        result = web_store.store(results, "riverdale", user_requested=False)

        assert result.message == "Web search results not stored - user did not request storage"
        assert result.stored_count == 0
        assert result.document_ids == []
        store.upsert.assert_not_called()

    def test_store_requested(self, web_store, store, results):
        result = web_store.store(results, "riverdale population")

        assert result.stored_count == 2
        assert result.message == "Successfully stored 2 web search results in knowledge base"
        assert result.document_ids[0].startswith("web_")
        assert result.document_ids[0].endswith("_0")
        assert result.document_ids[1].endswith("_1")

        docs = store.upsert.call_args.args[0]
        assert docs[0].text == "Riverdale full text"
        assert docs[1].text == "Population 2,500"
        assert docs[0].metadata["userRequested"] is True
        assert docs[0].metadata["source"] == "web_search"
        assert docs[0].metadata["originalQuery"] == "riverdale population"
        assert docs[0].metadata["url"] == "https://example.com/1"
        assert "timestamp" in docs[0].metadata

        assert result.to_dict()["storedCount"] == 2

    def test_store_failure(self, web_store, store, results):
        from entity_rag.common.errors import TransientIOError

        store.upsert.side_effect = TransientIOError("disk full")

        result = web_store.store(results, "riverdale")

        assert result.message.startswith("Failed to store web search results")
        assert result.stored_count == 0

    def test_automatic_ids_are_unique(self, web_store, store, results):
        ids = web_store.store_automatic(results, "riverdale")

        assert len(ids) == 2
        assert len(set(ids)) == 2
        assert all(i.startswith("web_") for i in ids)
        assert "userRequested" not in store.upsert.call_args.args[0][0].metadata

    def test_automatic_raises(self, web_store, store, results):
        from entity_rag.common.errors import TransientIOError

        store.upsert.side_effect = TransientIOError("disk full")

        with pytest.raises(TransientIOError):
            web_store.store_automatic(results, "riverdale")

    def test_results_without_text_are_skipped(self, web_store, store):
        from entity_rag.common.web_search import WebResult

        ids = web_store.store_automatic([WebResult("Empty", "https://e.test", "")], "riverdale")

        assert ids == []
        store.upsert.assert_not_called()
