"""Vector store service for persisting chunks to ChromaDB.

Two logical namespaces (primary source content and internal notes) live in
two collections of the same client. ChromaDB's Python client is synchronous,
so blocking operations run through asyncio.to_thread().
"""

import asyncio
from typing import Any

import chromadb
import structlog

from localindex.errors import StoreError
from localindex.models.chunk import Chunk
from localindex.models.enums import Namespace, SearchStrategy
from localindex.models.hit import ScoredChunk

_METADATA_SCALARS = (str, int, float, bool)


def _keyword_text(text: str) -> str:
    return text.lower()


def _and(*clauses: dict[str, Any]) -> dict[str, Any]:
    return clauses[0] if len(clauses) == 1 else {"$and": list(clauses)}


class VectorStore:
    """Stores chunks with optional embeddings and serves vector/keyword queries.

    ``upsert_document`` deletes a document's chunks and inserts the new set
    while holding the namespace lock. Queries take the same lock, so a reader
    sees either the old set or the new set of a document, never a mix.
    Chunks without an embedding are stored with a zero placeholder vector and
    ``embedded=False`` and are excluded from vector queries.
    Chunk text is kept in metadata; the document field holds a lowercased
    copy used only for keyword matching.
    """

    def __init__(
        self,
        client: chromadb.ClientAPI,
        dimension: int,
        collection_prefix: str = "",
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._client = client
        self._dimension = dimension
        self._collection_prefix = collection_prefix
        self._logger = logger or structlog.get_logger(__name__)
        self._collections: dict[Namespace, chromadb.Collection] = {}
        self._locks = {namespace: asyncio.Lock() for namespace in Namespace}

    def collection_name(self, namespace: Namespace) -> str:
        return f"{self._collection_prefix}{namespace.value}"

    async def initialize(self) -> None:
        """Get or create one collection per namespace."""
        for namespace in Namespace:
            name = self.collection_name(namespace)
            self._collections[namespace] = await self._call(self._client.get_or_create_collection, name=name)
        self._logger.info(
            "vector_store_initialized",
            collections=[self.collection_name(namespace) for namespace in Namespace],
            dimension=self._dimension,
        )

    async def upsert_document(
        self,
        namespace: Namespace,
        source_id: str,
        document_id: str,
        chunks: list[Chunk],
    ) -> None:
        """Replace every chunk of a document with a new set.

        Raises:
            ValueError: If a chunk belongs to another namespace/source/document.
            StoreError: If the store rejects the write.
        """
        for chunk in chunks:
            if (chunk.namespace, chunk.source_id, chunk.document_id) != (namespace, source_id, document_id):
                raise ValueError(f"Chunk {chunk.chunk_id} does not belong to {namespace.value}:{document_id}")

        collection = self._collection(namespace)
        async with self._locks[namespace]:
            await self._call(collection.delete, where=self._document_filter(source_id, document_id))
            if chunks:
                await self._call(
                    collection.upsert,
                    ids=[chunk.chunk_id for chunk in chunks],
                    embeddings=[chunk.embedding or self._placeholder() for chunk in chunks],
                    documents=[_keyword_text(chunk.content) for chunk in chunks],
                    metadatas=[self._to_metadata(chunk) for chunk in chunks],
                )
        self._logger.debug(
            "document_upserted",
            namespace=namespace.value,
            source_id=source_id,
            document_id=document_id,
            chunk_count=len(chunks),
        )

    async def remove_document(self, namespace: Namespace, source_id: str, document_id: str) -> None:
        collection = self._collection(namespace)
        async with self._locks[namespace]:
            await self._call(collection.delete, where=self._document_filter(source_id, document_id))
        self._logger.debug(
            "document_removed",
            namespace=namespace.value,
            source_id=source_id,
            document_id=document_id,
        )

    async def remove_source(self, source_id: str) -> None:
        """Delete every chunk of a source in both namespaces."""
        for namespace in Namespace:
            collection = self._collection(namespace)
            async with self._locks[namespace]:
                await self._call(collection.delete, where={"source_id": source_id})
        self._logger.info("source_chunks_removed", source_id=source_id)

    async def get_document_chunks(self, namespace: Namespace, source_id: str, document_id: str) -> list[Chunk]:
        """Return a document's chunks ordered by ordinal, embeddings included."""
        collection = self._collection(namespace)
        async with self._locks[namespace]:
            result = await self._call(
                collection.get,
                where=self._document_filter(source_id, document_id),
                include=["metadatas", "embeddings"],
            )
        embeddings = result.get("embeddings")
        chunks = []
        for index, chunk_id in enumerate(result["ids"]):
            metadata = dict(result["metadatas"][index])
            embedding = None
            if metadata.get("embedded") and embeddings is not None:
                embedding = [float(value) for value in embeddings[index]]
            chunks.append(self._to_chunk(chunk_id, metadata, embedding))
        return sorted(chunks, key=lambda chunk: chunk.ordinal)

    async def list_document_ids(self, namespace: Namespace, source_id: str) -> set[str]:
        collection = self._collection(namespace)
        result = await self._call(collection.get, where={"source_id": source_id}, include=["metadatas"])
        return {str(metadata["document_id"]) for metadata in result["metadatas"]}

    async def count(self, namespace: Namespace = Namespace.PRIMARY) -> int:
        return await self._call(self._collection(namespace).count)

    async def source_stats(self, source_id: str) -> dict[Namespace, int]:
        """Chunk counts for a source, per namespace."""
        stats = {}
        for namespace in Namespace:
            result = await self._call(self._collection(namespace).get, where={"source_id": source_id}, include=[])
            stats[namespace] = len(result["ids"])
        return stats

    async def vector_query(self, namespace: Namespace, embedding: list[float], limit: int) -> list[ScoredChunk]:
        """Nearest embedded chunks, scored as 1 / (1 + distance)."""
        collection = self._collection(namespace)
        async with self._locks[namespace]:
            if await self._call(collection.count) == 0:
                return []
            result = await self._call(
                collection.query,
                query_embeddings=[embedding],
                n_results=limit,
                where={"embedded": True},
                include=["metadatas", "distances"],
            )
        hits = []
        for index, chunk_id in enumerate(result["ids"][0]):
            distance = max(0.0, float(result["distances"][0][index]))
            hits.append(
                self._to_hit(
                    chunk_id,
                    result["metadatas"][0][index],
                    score=1.0 / (1.0 + distance),
                    strategy=SearchStrategy.SEMANTIC,
                )
            )
        return hits

    async def keyword_query(self, namespace: Namespace, text: str, limit: int) -> list[ScoredChunk]:
        """Case-insensitive substring match on query terms.

        The stored document text is a lowercased copy of each chunk, so the
        store-side ``$contains`` filter matches regardless of case. Hits are
        scored by the fraction of query terms present.
        """
        terms = list(dict.fromkeys(_keyword_text(term) for term in text.split() if term))
        if not terms:
            return []
        if len(terms) == 1:
            where_document: dict[str, Any] = {"$contains": terms[0]}
        else:
            where_document = {"$or": [{"$contains": term} for term in terms]}

        collection = self._collection(namespace)
        async with self._locks[namespace]:
            result = await self._call(
                collection.get,
                where_document=where_document,
                include=["documents", "metadatas"],
            )

        hits = []
        for index, chunk_id in enumerate(result["ids"]):
            haystack = result["documents"][index]
            score = sum(1 for term in terms if term in haystack) / len(terms)
            hits.append(self._to_hit(chunk_id, result["metadatas"][index], score, SearchStrategy.LEXICAL))
        hits.sort(key=lambda hit: (-hit.score, hit.document_id, hit.ordinal))
        return hits[:limit]

    def _collection(self, namespace: Namespace) -> chromadb.Collection:
        collection = self._collections.get(namespace)
        if collection is None:
            raise RuntimeError("VectorStore not initialized. Call initialize() first.")
        return collection

    async def _call(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except (ValueError, TypeError):
            raise
        except Exception as e:
            raise StoreError(f"Vector store operation failed: {e}") from e

    def _placeholder(self) -> list[float]:
        return [0.0] * self._dimension

    @staticmethod
    def _document_filter(source_id: str, document_id: str) -> dict[str, Any]:
        return _and({"source_id": source_id}, {"document_id": document_id})

    @staticmethod
    def _to_metadata(chunk: Chunk) -> dict[str, str | int | float | bool]:
        metadata = {key: value for key, value in chunk.metadata.items() if isinstance(value, _METADATA_SCALARS)}
        metadata.update(
            {
                "namespace": chunk.namespace.value,
                "source_id": chunk.source_id,
                "document_id": chunk.document_id,
                "ordinal": chunk.ordinal,
                "content": chunk.content,
                "embedded": chunk.embedding is not None,
            }
        )
        return metadata

    @staticmethod
    def _split_metadata(metadata: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
        keys = {"namespace", "source_id", "document_id", "ordinal", "content"}
        identity = {key: metadata[key] for key in keys}
        rest = {key: value for key, value in metadata.items() if key not in keys}
        return identity, rest

    def _to_chunk(self, chunk_id: str, metadata: dict[str, Any], embedding: list[float] | None) -> Chunk:
        identity, rest = self._split_metadata(metadata)
        return Chunk(
            chunk_id=chunk_id,
            namespace=Namespace(identity["namespace"]),
            source_id=identity["source_id"],
            document_id=identity["document_id"],
            ordinal=int(identity["ordinal"]),
            content=identity["content"],
            embedding=embedding,
            metadata=rest,
        )

    def _to_hit(
        self,
        chunk_id: str,
        metadata: dict[str, Any],
        score: float,
        strategy: SearchStrategy,
    ) -> ScoredChunk:
        identity, rest = self._split_metadata(dict(metadata))
        return ScoredChunk(
            chunk_id=chunk_id,
            namespace=Namespace(identity["namespace"]),
            source_id=identity["source_id"],
            document_id=identity["document_id"],
            ordinal=int(identity["ordinal"]),
            content=identity["content"],
            score=min(1.0, max(0.0, score)),
            strategy=strategy,
            metadata=rest,
        )
