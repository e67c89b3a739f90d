"""Tests for vector index and chunk store implementations."""

import os
import uuid

import pytest

from archrag.domain.chunk import Chunk
from archrag.domain.vector import VectorMetadata
from archrag.storage.chunkstore import PgChunkStore
from archrag.storage.memory import InMemoryChunkStore, InMemoryVectorIndex
from archrag.storage.vectorstore import PgVectorIndex, _parse_vector_dim


def make_metadata(project_id="proj", path="a.py", start=1):
    return VectorMetadata(
        project_id=project_id,
        file_path=path,
        start_line=start,
        end_line=start + 4,
        language="python",
        semantic_type="function",
        semantic_name=f"fn_{start}",
        token_count=10,
        content="def fn(): pass",
    )


def make_chunk(project_id="proj", chunk_hash="h1", start=1, embedding=None):
    return Chunk(
        chunk_hash=chunk_hash,
        project_id=project_id,
        file_path="a.py",
        start_line=start,
        end_line=start + 2,
        token_count=12,
        language="python",
        text_hash="t-" + chunk_hash,
        semantic_type="function",
        semantic_name="fn",
        content="def fn():\n    pass\n",
        embedding=embedding,
        embedding_model="hashing-embedding" if embedding else None,
    )


class TestInMemoryVectorIndex:
    """Tests for the in-process cosine index."""

    async def test_ranks_by_similarity(self):
        index = InMemoryVectorIndex()
        await index.index([
            ("far", [0.0, 1.0], make_metadata(start=1)),
            ("near", [1.0, 0.1], make_metadata(start=10)),
            ("mid", [1.0, 1.0], make_metadata(start=20)),
        ])

        results = await index.query([1.0, 0.0], top_k=3, project_id="proj")

        assert [r.chunk_id for r in results] == ["near", "mid", "far"]
        assert results[0].score > results[1].score > results[2].score
        assert results[0].metadata.start_line == 10

    async def test_top_k_limits_results(self):
        index = InMemoryVectorIndex()
        await index.index([(f"c{i}", [1.0, float(i)], make_metadata(start=i)) for i in range(5)])

        assert len(await index.query([1.0, 0.0], top_k=2, project_id="proj")) == 2

    async def test_ties_keep_insertion_order(self):
        """Test equal scores are returned in the order they were indexed."""
        index = InMemoryVectorIndex()
        await index.index([
            ("b", [1.0, 0.0], make_metadata(start=1)),
            ("a", [2.0, 0.0], make_metadata(start=2)),
            ("c", [3.0, 0.0], make_metadata(start=3)),
        ])

        results = await index.query([1.0, 0.0], top_k=3, project_id="proj")

        assert [r.chunk_id for r in results] == ["b", "a", "c"]

    async def test_project_scope(self):
        """Test queries never return another project's vectors."""
        index = InMemoryVectorIndex()
        await index.index([
            ("mine", [0.0, 1.0], make_metadata(project_id="p1")),
            ("theirs", [1.0, 0.0], make_metadata(project_id="p2")),
        ])

        results = await index.query([1.0, 0.0], top_k=10, project_id="p1")

        assert [r.chunk_id for r in results] == ["mine"]
        assert await index.query([1.0, 0.0], top_k=10, project_id="missing") == []

    async def test_upsert_replaces(self):
        """Test re-indexing an id replaces the vector and metadata."""
        index = InMemoryVectorIndex()
        await index.index([("c1", [0.0, 1.0], make_metadata(start=1))])
        await index.index([("c1", [1.0, 0.0], make_metadata(start=50))])

        results = await index.query([1.0, 0.0], top_k=5, project_id="proj")

        assert await index.count("proj") == 1
        assert results[0].score == pytest.approx(1.0)
        assert results[0].metadata.start_line == 50

    async def test_delete_by_project(self):
        index = InMemoryVectorIndex()
        await index.index([
            ("c1", [1.0, 0.0], make_metadata(project_id="p1")),
            ("c2", [1.0, 0.0], make_metadata(project_id="p2")),
        ])

        await index.delete_by_project("p1")

        assert await index.count("p1") == 0
        assert await index.count("p2") == 1


class TestInMemoryChunkStore:
    """Tests for the in-process chunk store."""

    async def test_add_and_get_hashes(self):
        store = InMemoryChunkStore()
        await store.add_range([make_chunk(chunk_hash="h1"), make_chunk(chunk_hash="h2", start=5)])

        assert await store.get_hashes("proj") == {"h1", "h2"}
        assert await store.get_hashes("other") == set()
        assert await store.count("proj") == 2

    async def test_add_replaces_same_hash(self):
        store = InMemoryChunkStore()
        await store.add_range([make_chunk(chunk_hash="h1")])
        await store.add_range([make_chunk(chunk_hash="h1", embedding=[0.1, 0.2])])

        chunks = await store.get_by_project("proj")

        assert len(chunks) == 1
        assert chunks[0].embedding == [0.1, 0.2]

    async def test_delete_by_project(self):
        store = InMemoryChunkStore()
        await store.add_range([make_chunk(project_id="p1"), make_chunk(project_id="p2")])

        await store.delete_by_project("p1")

        assert await store.count("p1") == 0
        assert await store.count("p2") == 1


def test_parse_vector_dim_from_pgvector_format():
    assert _parse_vector_dim("vector(768)") == 768
    assert _parse_vector_dim("vector(1024)") == 1024
    assert _parse_vector_dim("text") is None


def test_invalid_table_name_rejected():
    with pytest.raises(ValueError, match="Invalid table name"):
        PgVectorIndex("postgresql://unused", dimension=8, table_name="vectors; drop")


async def test_uninitialized_index_raises():
    index = PgVectorIndex("postgresql://unused", dimension=8)
    with pytest.raises(RuntimeError, match="not initialized"):
        await index.count("proj")


@pytest.fixture
def database_url():
    url = os.environ.get("TEST_DATABASE_URL")
    if not url:
        pytest.skip("TEST_DATABASE_URL not set")
    return url


@pytest.fixture
async def pg_vector_index(database_url):
    index = PgVectorIndex(database_url, dimension=3, table_name=f"test_vec_{uuid.uuid4().hex[:8]}")
    await index.initialize()
    yield index
    await index.delete_by_project("proj")
    await index.close()


@pytest.fixture
async def pg_chunk_store(database_url):
    store = PgChunkStore(database_url, table_name=f"test_chunks_{uuid.uuid4().hex[:8]}")
    await store.initialize()
    yield store
    await store.delete_by_project("proj")
    await store.close()


class TestPgVectorIndex:
    """Tests against a real pgvector database."""

    async def test_index_and_query(self, pg_vector_index):
        await pg_vector_index.index([
            ("far", [0.0, 1.0, 0.0], make_metadata(start=1)),
            ("near", [1.0, 0.1, 0.0], make_metadata(start=10)),
        ])

        results = await pg_vector_index.query([1.0, 0.0, 0.0], top_k=5, project_id="proj")

        assert [r.chunk_id for r in results] == ["near", "far"]
        assert results[0].metadata.semantic_name == "fn_10"
        assert results[0].metadata.content == "def fn(): pass"

    async def test_upsert_and_scope(self, pg_vector_index):
        await pg_vector_index.index([("c1", [1.0, 0.0, 0.0], make_metadata())])
        await pg_vector_index.index([("c1", [0.0, 1.0, 0.0], make_metadata(start=7))])
        await pg_vector_index.index([("c1", [1.0, 0.0, 0.0], make_metadata(project_id="other"))])

        assert await pg_vector_index.count("proj") == 1
        results = await pg_vector_index.query([0.0, 1.0, 0.0], top_k=5, project_id="proj")
        assert results[0].metadata.start_line == 7

        await pg_vector_index.delete_by_project("other")


class TestPgChunkStore:
    """Tests against a real PostgreSQL database."""

    async def test_round_trip(self, pg_chunk_store):
        await pg_chunk_store.add_range([
            make_chunk(chunk_hash="h2", start=20, embedding=[0.5, 0.5]),
            make_chunk(chunk_hash="h1", start=1),
        ])

        assert await pg_chunk_store.get_hashes("proj") == {"h1", "h2"}
        chunks = await pg_chunk_store.get_by_project("proj")
        assert [c.chunk_hash for c in chunks] == ["h1", "h2"]
        assert chunks[1].embedding == [0.5, 0.5]
        assert chunks[0].embedding is None
        assert chunks[0].content == "def fn():\n    pass\n"
