"""
Hasher Tests - Verify fingerprints and record keys.

Tests:
- Determinism across hasher instances
- Metadata sensitivity (and opting out of it)
- Source identity folded into the key
- Explicit ids
- Order preservation in parallel hashing
"""

import dataclasses

import pytest

from docsync.errors import ValidationError
from docsync.hasher import Hasher, hash_documents
from docsync.models import Document


NAMESPACE = "local/test"


class TestHasher:
    """Tests for the Hasher class."""

    @pytest.fixture
    def hasher(self, test_config):
        h = Hasher(test_config)
        yield h
        h.close()

    def test_same_document_same_fingerprint(self, test_config):
        """Two hasher instances agree on the fingerprint."""
        doc = Document("Some content", {"source": "a.md", "title": "A"})

        first = Hasher(test_config).hash_document(doc, NAMESPACE, "source")
        second = Hasher(test_config).hash_document(doc, NAMESPACE, "source")

        assert first.hash == second.hash
        assert first.key == second.key

    def test_metadata_order_does_not_matter(self, hasher):
        a = Document("text", {"source": "a.md", "title": "A"})
        b = Document("text", {"title": "A", "source": "a.md"})

        assert hasher.hash_document(a, NAMESPACE, "source").hash == \
            hasher.hash_document(b, NAMESPACE, "source").hash

    def test_content_change_changes_fingerprint(self, hasher):
        a = hasher.hash_document(Document("v1", {"source": "a"}), NAMESPACE, "source")
        b = hasher.hash_document(Document("v2", {"source": "a"}), NAMESPACE, "source")

        assert a.content_hash != b.content_hash
        assert a.hash != b.hash
        assert a.key != b.key

    def test_metadata_change_changes_fingerprint(self, hasher):
        a = hasher.hash_document(Document("text", {"source": "a", "title": "x"}), NAMESPACE, "source")
        b = hasher.hash_document(Document("text", {"source": "a", "title": "y"}), NAMESPACE, "source")

        assert a.content_hash == b.content_hash
        assert a.hash != b.hash

    def test_metadata_hashing_can_be_disabled(self, test_config):
        hasher = Hasher(dataclasses.replace(test_config, hash_metadata=False))
        a = hasher.hash_document(Document("text", {"source": "a", "title": "x"}), NAMESPACE, "source")
        b = hasher.hash_document(Document("text", {"source": "a", "title": "y"}), NAMESPACE, "source")

        assert a.hash == b.hash
        assert a.metadata_hash == ""

    def test_identical_content_different_sources_get_different_keys(self, test_config):
        hasher = Hasher(dataclasses.replace(test_config, hash_metadata=False))
        a = hasher.hash_document(Document("shared", {"source": "a"}), NAMESPACE, "source")
        b = hasher.hash_document(Document("shared", {"source": "b"}), NAMESPACE, "source")

        assert a.hash == b.hash
        assert a.key != b.key
        assert (a.group_id, b.group_id) == ("a", "b")

    def test_namespace_is_folded_into_key(self, hasher):
        doc = Document("text", {"source": "a"})

        assert hasher.hash_document(doc, "local/one", "source").key != \
            hasher.hash_document(doc, "local/two", "source").key

    def test_explicit_id_is_used_as_key(self, hasher):
        hashed = hasher.hash_document(Document("text", {"source": "a"}, id="doc-7"), NAMESPACE, "source")

        assert hashed.key == "doc-7"

    def test_group_id_is_stringified(self, hasher):
        hashed = hasher.hash_document(Document("text", {"page": 3}), NAMESPACE, "page")

        assert hashed.group_id == "3"

    def test_missing_source_id_raises(self, hasher):
        with pytest.raises(ValidationError) as exc_info:
            hasher.hash_document(Document("text", {}), NAMESPACE, "source", index=4)

        assert exc_info.value.index == 4

    @pytest.mark.asyncio
    async def test_parallel_hashing_preserves_order(self, hasher):
        docs = [Document(f"content {i}", {"source": f"s{i % 3}"}) for i in range(50)]

        results = await hasher.hash_documents(docs, NAMESPACE, "source")

        assert [r.document for r in results] == docs
        assert len({r.key for r in results}) == 50

    @pytest.mark.asyncio
    async def test_empty_batch(self, hasher):
        assert await hasher.hash_documents([], NAMESPACE, "source") == []


class TestHasherConvenience:
    """Tests for convenience functions."""

    @pytest.mark.asyncio
    async def test_hash_documents_function(self, test_config):
        docs = [Document("a", {"source": "x"}), Document("b", {"source": "x"})]

        results = await hash_documents(docs, NAMESPACE, config=test_config)

        assert len(results) == 2
        assert all(r.group_id == "x" for r in results)
