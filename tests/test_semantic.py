"""Tests for the semantic search engine and its incremental indexing."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from conftest import write_doc
from fakes import FakeChroma, FakeEmbedder
from skillfinder.errors import (
    CollectionEmpty,
    CollectionUnavailable,
    IndexNotBuilt,
    ServerConnectFailure,
)
from skillfinder.index.lexical import LexicalSearchEngine
from skillfinder.index.semantic import SemanticSearchEngine, distance_to_similarity
from skillfinder.index.server import ServerInstance, ServerRegistry
from skillfinder.models import Source


@pytest.fixture
def chroma() -> FakeChroma:
    return FakeChroma()


def make_engine(
    skill_dir: Path, registry: ServerRegistry, chroma: FakeChroma, **kwargs: Any
) -> SemanticSearchEngine:
    return SemanticSearchEngine(
        skill_dir,
        registry=registry,
        embedder=FakeEmbedder(),
        client_factory=chroma,
        **kwargs,
    )


def prestart(engine: SemanticSearchEngine) -> ServerInstance:
    """Start the engine's server up front so it outlives individual operations."""
    return engine.registry.start_server(engine.key, engine.server_config)


class TestDistanceToSimilarity:
    """Test the distance mapping."""

    @pytest.mark.parametrize(
        ("distance", "expected"),
        [(0.0, 1.0), (0.25, 0.75), (1.0, 0.0), (1.5, 0.0), (-0.1, 1.0), (None, 0.0)],
    )
    def test_mapping(self, distance: float | None, expected: float) -> None:
        assert distance_to_similarity(distance) == pytest.approx(expected)


class TestSession:
    """Test server ownership around operations."""

    def test_build_stops_server_it_started(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        engine = make_engine(skill_dir, fake_registry, chroma)

        engine.build_index(references_dir)

        assert engine.is_built()
        assert fake_registry.running_count() == 0
        assert list(skill_dir.glob("chroma_temp_*")) == []

    def test_prestarted_server_left_running(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        engine = make_engine(skill_dir, fake_registry, chroma)
        instance = prestart(engine)

        engine.build_index(references_dir)

        assert fake_registry.is_running(engine.key)
        instance.process.terminate.assert_not_called()

    def test_nested_sessions_share_server(
        self,
        skill_dir: Path,
        references_dir: Path,
        fake_registry: ServerRegistry,
        fake_spawn: Any,
        chroma: FakeChroma,
    ) -> None:
        engine = make_engine(skill_dir, fake_registry, chroma)

        with engine.session():
            engine.build_index(references_dir)
            results = engine.search("install")

        assert results
        assert fake_spawn.call_count == 1
        assert fake_registry.running_count() == 0

    def test_connect_failure_cleans_up(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        chroma.healthy = False
        engine = make_engine(skill_dir, fake_registry, chroma)

        with pytest.raises(ServerConnectFailure):
            engine.build_index(references_dir)

        assert fake_registry.running_count() == 0
        assert fake_registry.get_info(engine.key) is None


class TestIncrementalIndexing:
    """Test hash-snapshot driven updates."""

    def test_initial_build_indexes_everything(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        engine = make_engine(skill_dir, fake_registry, chroma)
        instance = prestart(engine)

        engine.build_index(references_dir)

        collection = chroma.collection(instance.port)
        assert sorted(collection.records) == [
            "external/demo/api-reference.md",
            "user/faq.md",
            "user/setup-guide.md",
        ]
        metadata = collection.records["user/faq.md"]["metadata"]
        assert metadata == {
            "title": "FAQ",
            "file_path": "user/faq.md",
            "file_name": "faq.md",
            "source": "user",
        }
        hash_file = skill_dir / "assets" / ".index_hashes.json"
        assert sorted(json.loads(hash_file.read_text())) == sorted(collection.records)

    def test_unchanged_rebuild_makes_no_calls(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        """A second build over identical files never touches the store."""
        engine = make_engine(skill_dir, fake_registry, chroma)
        instance = prestart(engine)
        engine.build_index(references_dir)
        collection = chroma.collection(instance.port)
        connections = chroma.connections
        upserts = len(collection.upsert_calls)

        engine.build_index(references_dir)

        assert chroma.connections == connections
        assert len(collection.upsert_calls) == upserts
        assert collection.delete_calls == []

    def test_removed_file_disappears(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        fallback = LexicalSearchEngine()
        engine = make_engine(skill_dir, fake_registry, chroma, fallback=fallback)
        instance = prestart(engine)
        engine.build_index(references_dir)

        (references_dir / "user" / "faq.md").unlink()
        engine.build_index(references_dir)

        collection = chroma.collection(instance.port)
        assert collection.delete_calls == [["user/faq.md"]]
        assert "user/faq.md" not in collection.records
        assert "user/faq.md" not in {doc.id for doc in fallback.documents}
        assert "user/faq.md" not in {r.id for r in engine.search("questions")}

    def test_modified_file_reindexed_alone(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        engine = make_engine(skill_dir, fake_registry, chroma)
        instance = prestart(engine)
        engine.build_index(references_dir)

        write_doc(references_dir, "user/faq.md", "# FAQ\n\nUpdated answers.\n")
        write_doc(references_dir, "user/new.md", "# New\n\nFresh note.\n")
        engine.build_index(references_dir)

        collection = chroma.collection(instance.port)
        assert collection.upsert_calls[-1] == ["user/new.md", "user/faq.md"]
        assert "Updated answers." in collection.records["user/faq.md"]["document"]

    def test_fresh_server_gets_full_index(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        """A new ephemeral server starts empty even though the snapshot is unchanged."""
        engine = make_engine(skill_dir, fake_registry, chroma)
        engine.build_index(references_dir)

        engine.build_index(references_dir)

        assert sorted(chroma.stores) == [9100, 9101]
        assert chroma.collection(9101).count() == 3

    def test_batches(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        engine = make_engine(skill_dir, fake_registry, chroma, batch_size=2)
        instance = prestart(engine)

        engine.build_index(references_dir)

        assert [len(ids) for ids in chroma.collection(instance.port).upsert_calls] == [2, 1]

    def test_custom_hash_file(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma, tmp_path: Path
    ) -> None:
        hash_file = tmp_path / "hashes" / "index.json"
        engine = make_engine(skill_dir, fake_registry, chroma, hash_file=hash_file)

        engine.build_index(references_dir)

        assert hash_file.exists()


class TestSemanticSearch:
    """Test nearest-neighbour queries."""

    def test_search_returns_similarity_scores(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        engine = make_engine(skill_dir, fake_registry, chroma)
        instance = prestart(engine)
        engine.build_index(references_dir)
        chroma.collection(instance.port).distances["user/setup-guide.md"] = 0.1

        results = engine.search("how do I install", top_k=3)

        assert results[0].id == "user/setup-guide.md"
        assert results[0].score == pytest.approx(0.9)
        assert results[0].metadata["match_type"] == "semantic"
        assert results[0].metadata["server_port"] == instance.port
        assert results[0].path == references_dir / "user" / "setup-guide.md"
        assert all(r.score == pytest.approx(0.75) for r in results[1:])

    def test_source_filter(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        engine = make_engine(skill_dir, fake_registry, chroma)
        prestart(engine)
        engine.build_index(references_dir)

        results = engine.search("anything", source="external")

        assert [r.id for r in results] == ["external/demo/api-reference.md"]
        assert results[0].source is Source.EXTERNAL

    def test_top_k_limited_by_count(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        engine = make_engine(skill_dir, fake_registry, chroma)
        prestart(engine)
        engine.build_index(references_dir)

        assert len(engine.search("anything", top_k=10)) == 3

    def test_empty_query(
        self, skill_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        engine = make_engine(skill_dir, fake_registry, chroma)

        assert engine.search("  ") == []
        assert chroma.connections == 0

    def test_never_built(
        self, skill_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        engine = make_engine(skill_dir, fake_registry, chroma)

        with pytest.raises(IndexNotBuilt):
            engine.search("setup")

    def test_missing_collection_reindexed(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        """After the build's server is gone, a search re-indexes on the new one."""
        engine = make_engine(skill_dir, fake_registry, chroma)
        engine.build_index(references_dir)

        results = engine.search("anything")

        assert len(results) == 3
        assert chroma.collection(9101).count() == 3

    def test_empty_collection(
        self, skill_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma, tmp_path: Path
    ) -> None:
        empty = tmp_path / "empty"
        empty.mkdir()
        engine = make_engine(skill_dir, fake_registry, chroma)
        engine.build_index(empty)

        with pytest.raises(CollectionEmpty):
            engine.search("setup")

    def test_malformed_metadata(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        engine = make_engine(skill_dir, fake_registry, chroma)
        instance = prestart(engine)
        engine.build_index(references_dir)
        chroma.collection(instance.port).records["user/faq.md"]["metadata"] = None

        with pytest.raises(CollectionUnavailable):
            engine.search("anything", top_k=3)

    def test_fallback_on_failure(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        """With a lexical fallback, semantic failures return lexical results."""
        fallback = LexicalSearchEngine()
        engine = make_engine(skill_dir, fake_registry, chroma, fallback=fallback)
        chroma.healthy = False
        with pytest.raises(ServerConnectFailure):
            engine.build_index(references_dir)

        results = engine.search("setup")

        assert results[0].title == "Setup Guide"
        assert results[0].metadata["match_type"] == "title"
        assert fake_registry.running_count() == 0


class TestHousekeeping:
    """Test statistics and clearing."""

    def test_get_stats(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        engine = make_engine(skill_dir, fake_registry, chroma)
        prestart(engine)
        engine.build_index(references_dir)

        assert engine.get_stats() == {"total_documents": 3, "engine": "semantic"}

    def test_get_stats_on_failure(
        self, skill_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        chroma.healthy = False
        engine = make_engine(skill_dir, fake_registry, chroma)

        assert engine.get_stats()["total_documents"] == 0

    def test_clear_index(
        self, skill_dir: Path, references_dir: Path, fake_registry: ServerRegistry, chroma: FakeChroma
    ) -> None:
        engine = make_engine(skill_dir, fake_registry, chroma)
        instance = prestart(engine)
        engine.build_index(references_dir)
        hash_file = skill_dir / "assets" / ".index_hashes.json"
        assert hash_file.exists()

        engine.clear_index()

        assert not hash_file.exists()
        assert "skills" not in chroma.stores[instance.port]
        assert not engine.is_built()
