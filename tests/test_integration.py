"""
Integration Tests - End-to-end ingest workflows.

Tests:
- Loader discovery and skip rules
- Full ingest pipeline (load → split → index)
- Re-ingest of an unchanged tree
- File removal and edits between runs
- Empty corpus and bad configuration
"""

import pytest

from docsync.errors import ConfigurationError, NoDocumentsError
from docsync.ingest import Ingestor, fill_required_metadata, main
from docsync.inspect_store import main as inspect_main
from docsync.loader import Loader, load_documents
from docsync.models import Document


class TestLoader:
    """Tests for the filesystem Loader."""

    @pytest.mark.asyncio
    async def test_finds_text_files(self, sample_files, test_config):
        docs = await load_documents(config=test_config)

        sources = {d.metadata["source"] for d in docs}

        assert str(sample_files["guide"]) in sources
        assert str(sample_files["notes"]) in sources
        assert str(sample_files["nested"]) in sources

    @pytest.mark.asyncio
    async def test_skips_hidden_binary_and_vendored(self, sample_files, test_config):
        docs = await load_documents(config=test_config)

        sources = {d.metadata["source"] for d in docs}

        assert str(sample_files["hidden"]) not in sources
        assert str(sample_files["image"]) not in sources
        assert str(sample_files["node_modules"]) not in sources

    @pytest.mark.asyncio
    async def test_sets_title_and_sorts(self, sample_files, test_config):
        docs = await load_documents(config=test_config)

        assert [d.metadata["source"] for d in docs] == sorted(d.metadata["source"] for d in docs)
        assert {d.metadata["title"] for d in docs} == {"guide", "notes", "reference"}

    @pytest.mark.asyncio
    async def test_missing_root_is_ignored(self, temp_dir, test_config):
        loader = Loader(test_config)
        try:
            docs = await loader.load([temp_dir / "does-not-exist"])
        finally:
            loader.close()

        assert docs == []


class TestIngest:
    """End-to-end tests for the Ingestor."""

    @pytest.fixture
    def ingestor(self, test_config, record_manager, vector_store):
        i = Ingestor(test_config, record_manager=record_manager, vector_store=vector_store)
        yield i
        i.close()

    @pytest.mark.asyncio
    async def test_first_ingest_indexes_all_chunks(self, ingestor, sample_files, vector_store, record_manager):
        stats = await ingestor.run()

        assert stats.num_added > 3  # guide.md splits into several chunks
        assert stats.num_added == len(vector_store) == record_manager.count()

    @pytest.mark.asyncio
    async def test_reingest_skips_unchanged(self, ingestor, sample_files, vector_store):
        first = await ingestor.run()

        second = await ingestor.run()

        assert second.num_added == 0
        assert second.num_updated == 0
        assert second.num_skipped == first.num_added
        assert second.num_deleted == 0

    @pytest.mark.asyncio
    async def test_removed_and_edited_files(self, ingestor, sample_files, vector_store, record_manager):
        await ingestor.run()
        sample_files["nested"].unlink()
        sample_files["notes"].write_text("Edited notes file.")

        stats = await ingestor.run()

        assert stats.num_added == 1
        assert stats.num_deleted == 2
        assert record_manager.list_keys(group_ids=[str(sample_files["nested"])]) == []
        assert len(vector_store) == record_manager.count()

    @pytest.mark.asyncio
    async def test_empty_corpus_raises(self, ingestor, temp_dir):
        (temp_dir / "docs").mkdir()

        with pytest.raises(NoDocumentsError):
            await ingestor.run()

    def test_invalid_config_fails_at_startup(self, test_config, record_manager, vector_store):
        test_config.collection_name = ""

        with pytest.raises(ConfigurationError):
            Ingestor(test_config, record_manager=record_manager, vector_store=vector_store)

    def test_cli_reports_missing_collection(self, monkeypatch, temp_dir):
        monkeypatch.delenv("COLLECTION_NAME", raising=False)
        monkeypatch.setenv("RECORD_MANAGER_DB_URL", str(temp_dir / "ledger.db"))

        assert main(["--roots", str(temp_dir)]) == 1

    def test_cli_reports_bad_ledger_url(self, monkeypatch, temp_dir):
        monkeypatch.setenv("COLLECTION_NAME", "test")
        monkeypatch.setenv("RECORD_MANAGER_DB_URL", "postgres://u@h/db")

        assert main(["--roots", str(temp_dir)]) == 1
        assert inspect_main([]) == 1

    def test_cli_reports_unexpected_errors(self, monkeypatch, temp_dir):
        async def broken_ingest(roots, config):
            raise RuntimeError("vector store unreachable")

        monkeypatch.setenv("COLLECTION_NAME", "test")
        monkeypatch.setenv("RECORD_MANAGER_DB_URL", str(temp_dir / "ledger.db"))
        monkeypatch.setattr("docsync.ingest.ingest_docs", broken_ingest)

        assert main(["--roots", str(temp_dir)]) == 1


def test_fill_required_metadata():
    docs = [
        Document("a", {"source": "s"}),
        Document("b", {"source": "s", "title": "T"}),
    ]

    filled = fill_required_metadata(docs)

    assert filled[0].metadata == {"source": "s", "title": ""}
    assert filled[1] is docs[1]
