"""Semantic search backed by an on-demand ChromaDB server.

Documents are embedded with :class:`~skillfinder.embedding.encoder.EmbeddingModel`
and stored in a cosine-space collection. Vector distance is converted to a
similarity score with a single mapping::

    similarity = clamp(1 - cosine_distance, 0, 1)

Cosine distance lies in ``[0, 2]``; identical directions score 1.0 and
orthogonal or opposite vectors score 0.0.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import chromadb

from skillfinder.config import DEFAULT_HASH_FILE_NAME
from skillfinder.embedding.encoder import EmbeddingModel
from skillfinder.errors import (
    CollectionEmpty,
    CollectionUnavailable,
    IndexNotBuilt,
    SearchError,
    ServerConnectFailure,
    SkillFinderError,
)
from skillfinder.index.lexical import LexicalSearchEngine
from skillfinder.index.server import ServerConfig, ServerInstance, ServerRegistry, server_key
from skillfinder.index.snapshot import (
    FileHashSnapshot,
    diff_snapshots,
    load_snapshot,
    save_snapshot,
    snapshot_documents,
)
from skillfinder.ingestion.scanner import scan_references
from skillfinder.models import Document, SearchResult, Source

LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[..., Any]


def distance_to_similarity(distance: float | None) -> float:
    if distance is None:
        return 0.0
    return max(0.0, min(1.0, 1.0 - float(distance)))


def _instance_token(instance: ServerInstance) -> str:
    return f"{instance.key}:{instance.port}:{instance.started_at}"


class SemanticSearchEngine:
    """Vector search over a skill's references with incremental indexing.

    Every operation runs inside :meth:`session`, which starts the server on
    demand and shuts it down afterwards, but only if this engine was the one
    that started it.
    """

    def __init__(
        self,
        skill_dir: Path,
        *,
        registry: ServerRegistry,
        server_config: ServerConfig | None = None,
        collection_name: str = "skills",
        embedder: EmbeddingModel | None = None,
        fallback: LexicalSearchEngine | None = None,
        batch_size: int = 50,
        hash_file: Path | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.skill_dir = Path(skill_dir)
        self.registry = registry
        self.server_config = server_config or ServerConfig(skill_dir=self.skill_dir)
        self.key = server_key(self.skill_dir, self.server_config.instance_tag)
        self.collection_name = collection_name
        self.embedder = embedder or EmbeddingModel()
        self.fallback = fallback
        self.batch_size = max(1, batch_size)
        self.hash_file = hash_file
        self._client_factory = client_factory or chromadb.HttpClient
        self._references_dir: Optional[Path] = None
        self._indexed_on: Optional[str] = None
        self._built = False
        self._active_client: Any = None
        self._active_instance: Optional[ServerInstance] = None

    # -- server session -------------------------------------------------

    def _connect(self, instance: ServerInstance) -> Any:
        try:
            client = self._client_factory(host=instance.host, port=instance.port)
            client.heartbeat()
        except Exception as exc:
            raise ServerConnectFailure(
                f"Cannot reach vector database at {instance.url}: {exc}"
            ) from exc
        LOGGER.debug("Connected to vector database at %s", instance.url)
        return client

    @contextmanager
    def session(self) -> Iterator[Any]:
        """Yield a connected client; nested sessions reuse the outer connection."""
        if self._active_client is not None:
            yield self._active_client
            return

        instance, started = self.registry.ensure_server(self.key, self.server_config)
        try:
            self._active_client = self._connect(instance)
            self._active_instance = instance
            yield self._active_client
        finally:
            self._active_client = None
            self._active_instance = None
            if started:
                self.registry.stop_server(self.key)

    # -- indexing ---------------------------------------------------------

    def _hash_file_for(self, references_dir: Path) -> Path:
        if self.hash_file is not None:
            return Path(self.hash_file)
        return references_dir.parent / DEFAULT_HASH_FILE_NAME

    def _index_is_live(self, previous: FileHashSnapshot) -> bool:
        """Whether the store still holds the documents recorded in ``previous``."""
        if not previous:
            return False
        if self.server_config.persistent:
            return True
        instance = self.registry.get_info(self.key)
        return (
            instance is not None
            and instance.is_alive()
            and _instance_token(instance) == self._indexed_on
        )

    @staticmethod
    def _metadata_for(document: Document) -> Dict[str, Any]:
        return {
            "title": document.title,
            "file_path": document.id,
            "file_name": document.path.name,
            "source": document.source.value,
        }

    def build_index(self, references_dir: Path) -> None:
        """Bring the collection in line with ``references_dir``, touching only changed files."""
        references_dir = Path(references_dir)
        documents = scan_references(references_dir)
        current = snapshot_documents(documents)
        hash_file = self._hash_file_for(references_dir)
        previous = load_snapshot(hash_file)
        diff = diff_snapshots(previous, current)

        self._references_dir = references_dir
        if self.fallback is not None:
            self.fallback.index_documents(documents)

        if diff.is_empty() and self._index_is_live(previous):
            LOGGER.info("Semantic index is up to date")
            self._built = True
            return

        with self.session() as client:
            instance = self._active_instance
            try:
                collection = client.get_or_create_collection(
                    name=self.collection_name, metadata={"hnsw:space": "cosine"}
                )
                if instance is not None and _instance_token(instance) != self._indexed_on:
                    if previous and collection.count() == 0:
                        LOGGER.info("Collection is empty on this server, indexing from scratch")
                        diff = diff_snapshots({}, current)
                self._apply(collection, documents, diff.deleted, diff.changed)
            except SearchError:
                raise
            except Exception as exc:
                raise CollectionUnavailable(f"Failed to update collection: {exc}") from exc

            save_snapshot(hash_file, current)
            if instance is not None:
                self._indexed_on = _instance_token(instance)
            self._built = True
            LOGGER.info(
                "Semantic index updated: %d added, %d modified, %d deleted",
                len(diff.added),
                len(diff.modified),
                len(diff.deleted),
            )

    def _apply(
        self,
        collection: Any,
        documents: Sequence[Document],
        deleted: Sequence[str],
        changed: Sequence[str],
    ) -> None:
        if deleted:
            collection.delete(ids=list(deleted))

        by_id = {doc.id: doc for doc in documents}
        pending = [by_id[doc_id] for doc_id in changed]
        for start in range(0, len(pending), self.batch_size):
            batch = pending[start : start + self.batch_size]
            collection.upsert(
                ids=[doc.id for doc in batch],
                documents=[doc.content for doc in batch],
                metadatas=[self._metadata_for(doc) for doc in batch],
                embeddings=self.embedder.embed_documents([doc.content for doc in batch]),
            )
            LOGGER.debug("Indexed %d/%d documents", start + len(batch), len(pending))

    # -- querying ---------------------------------------------------------

    def search(
        self, query: str, *, top_k: int = 5, source: Source | str | None = None
    ) -> List[SearchResult]:
        if not query.strip() or top_k <= 0:
            return []
        try:
            return self._search(query, top_k, Source.coerce(source))
        except SkillFinderError as exc:
            if self.fallback is None:
                raise
            LOGGER.warning("Semantic search failed, falling back to lexical search: %s", exc)
            return self.fallback.search(query, top_k=top_k, source=source)

    def _open_collection(self, client: Any) -> Any:
        try:
            return client.get_collection(name=self.collection_name)
        except Exception as exc:
            if not self._built or self._references_dir is None:
                raise IndexNotBuilt(
                    f"Collection {self.collection_name!r} does not exist and was never indexed"
                ) from exc

        LOGGER.info("Collection missing on this server, re-indexing %s", self._references_dir)
        self._indexed_on = None
        self.build_index(self._references_dir)
        try:
            return client.get_collection(name=self.collection_name)
        except Exception as exc:
            raise CollectionUnavailable(f"Collection {self.collection_name!r} unavailable") from exc

    def _search(self, query: str, top_k: int, source: Optional[Source]) -> List[SearchResult]:
        with self.session() as client:
            collection = self._open_collection(client)
            try:
                count = collection.count()
            except Exception as exc:
                raise CollectionUnavailable(f"Cannot count collection: {exc}") from exc
            if count == 0:
                raise CollectionEmpty(f"Collection {self.collection_name!r} is empty")

            try:
                embedding = self.embedder.embed_documents([query])
                response = collection.query(
                    query_embeddings=embedding,
                    n_results=min(top_k, count),
                    where={"source": source.value} if source is not None else None,
                    include=["documents", "metadatas", "distances"],
                )
            except Exception as exc:
                raise CollectionUnavailable(f"Query failed: {exc}") from exc

            port = self._active_instance.port if self._active_instance is not None else None
            results = self._convert(response, port)

        results.sort(key=lambda result: result.score, reverse=True)
        LOGGER.info("Semantic search found %d results", len(results))
        return results

    def _convert(self, response: Dict[str, Any], port: Optional[int]) -> List[SearchResult]:
        ids = (response.get("ids") or [[]])[0]
        documents = (response.get("documents") or [[]])[0]
        metadatas = (response.get("metadatas") or [[]])[0]
        distances = (response.get("distances") or [[]])[0]

        results: List[SearchResult] = []
        for position, doc_id in enumerate(ids):
            metadata = metadatas[position] if position < len(metadatas) else None
            if not isinstance(metadata, dict):
                raise CollectionUnavailable(f"Malformed metadata for {doc_id!r}")
            try:
                source = Source(metadata.get("source", Source.USER.value))
            except ValueError as exc:
                raise CollectionUnavailable(f"Unknown source for {doc_id!r}") from exc

            distance = distances[position] if position < len(distances) else None
            relative = str(metadata.get("file_path") or doc_id)
            path = self._references_dir / relative if self._references_dir else Path(relative)
            results.append(
                SearchResult(
                    id=doc_id,
                    title=str(metadata.get("title") or doc_id),
                    content=(documents[position] if position < len(documents) else None) or "",
                    source=source,
                    path=path,
                    score=distance_to_similarity(distance),
                    metadata={
                        **metadata,
                        "match_type": "semantic",
                        "distance": distance,
                        "server_port": port,
                    },
                )
            )
        return results

    # -- housekeeping -----------------------------------------------------

    def is_built(self) -> bool:
        return self._built

    def get_stats(self) -> Dict[str, Any]:
        try:
            with self.session() as client:
                count = client.get_collection(name=self.collection_name).count()
        except Exception as exc:
            LOGGER.warning("Unable to read semantic index statistics: %s", exc)
            count = 0
        return {"total_documents": count, "engine": "semantic"}

    def clear_index(self) -> None:
        """Drop the collection and forget the hash snapshot so the next build starts over."""
        if self._references_dir is not None or self.hash_file is not None:
            hash_file = self._hash_file_for(self._references_dir or Path("."))
            if hash_file.exists():
                hash_file.unlink()

        if self.server_config.persistent or self.registry.is_running(self.key):
            try:
                with self.session() as client:
                    client.delete_collection(name=self.collection_name)
            except Exception as exc:
                LOGGER.warning("Collection %s could not be deleted: %s", self.collection_name, exc)

        self._built = False
        self._indexed_on = None
        if self.fallback is not None:
            self.fallback.clear_index()
