"""
Vector store: embeddings (OpenAI-compatible /embeddings over httpx) and the Milvus knowledge index.

KnowledgeIndex is created once per process and initialised lazily on first use;
callers share it through AgentDeps and close it in the app lifespan.
"""

import logging
import threading
from typing import Any

import httpx

from tripmate.core.config import (
    COLLECTION_NAME,
    EMBED_API_TIMEOUT,
    EMBED_BATCH_SIZE,
    EMBEDDING_API_KEY,
    EMBEDDING_BASE_URL,
    EMBEDDING_MODEL,
    MILVUS_TOKEN,
    MILVUS_URI,
    VECTOR_DIM,
)
from tripmate.core.errors import ServiceUnavailableError
from tripmate.schemas.knowledge import Document, KnowledgeStats, SearchHit

logger = logging.getLogger(__name__)

_OUTPUT_FIELDS = ["text", "name", "city", "tags", "rating", "review_count", "source", "chunk_index"]


def _normalize(vec: list[float]) -> list[float]:
    norm = sum(x * x for x in vec) ** 0.5
    if norm == 0:
        norm = 1.0
    return [x / norm for x in vec]


def escape_filter_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class EmbeddingClient:
    """Batch text embedding against an OpenAI-compatible endpoint (DashScope text-embedding-v3 by default)."""

    def __init__(
        self,
        api_key: str = EMBEDDING_API_KEY,
        base_url: str = EMBEDDING_BASE_URL,
        model: str = EMBEDDING_MODEL,
        dimensions: int = VECTOR_DIM,
        batch_size: int = EMBED_BATCH_SIZE,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.url = base_url.rstrip("/") + "/embeddings"
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size
        self._transport = transport

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in batches; returns one L2-normalised vector per input, in order."""
        if not texts:
            return []
        if not self.api_key:
            raise ServiceUnavailableError(
                "EMBEDDING_API_KEY (or DASHSCOPE_API_KEY) must be set in .env"
            )
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        vectors: list[list[float]] = []
        with httpx.Client(timeout=EMBED_API_TIMEOUT, transport=self._transport) as client:
            for i in range(0, len(texts), self.batch_size):
                batch = texts[i : i + self.batch_size]
                payload = {
                    "model": self.model,
                    "input": batch,
                    "dimensions": self.dimensions,
                    "encoding_format": "float",
                }
                response = client.post(self.url, json=payload, headers=headers)
                if response.status_code in (401, 403):
                    raise ServiceUnavailableError(
                        f"Embedding API rejected the key ({response.status_code})"
                    )
                if response.status_code != 200:
                    raise RuntimeError(
                        f"Embedding API error {response.status_code}: {response.text[:200]}"
                    )
                data = sorted(response.json().get("data", []), key=lambda d: d.get("index", 0))
                if len(data) != len(batch):
                    raise RuntimeError(
                        f"Embedding API returned {len(data)} vectors for {len(batch)} inputs"
                    )
                vectors.extend(_normalize(d["embedding"]) for d in data)
        return vectors

    def embed_query(self, text: str) -> list[float]:
        return self.embed([text])[0]


class KnowledgeIndex:
    """
    Process-wide handle over a Milvus collection of POI chunks.

    The pymilvus client is created on first use (ensure_initialized) and
    reused; concurrent first calls create it once.
    """

    def __init__(
        self,
        embedder: EmbeddingClient | None = None,
        uri: str = MILVUS_URI,
        token: str = MILVUS_TOKEN,
        collection_name: str = COLLECTION_NAME,
        client: Any = None,
    ) -> None:
        self.embedder = embedder or EmbeddingClient()
        self.uri = uri
        self.token = token
        self.collection_name = collection_name
        self._client = client
        self._collection_ready = False
        self._lock = threading.Lock()

    def ensure_initialized(self) -> Any:
        """Connect and create the COSINE collection when missing. Safe to call repeatedly."""
        with self._lock:
            if self._client is None:
                if not self.uri:
                    raise ServiceUnavailableError("MILVUS_URI must be set in .env")
                from pymilvus import MilvusClient

                kwargs = {"uri": self.uri}
                if self.token:
                    kwargs["token"] = self.token
                self._client = MilvusClient(**kwargs)
                logger.info("[vector_store:ensure_initialized] Milvus connection established uri=%s", self.uri)
            if not self._collection_ready:
                if not self._client.has_collection(self.collection_name):
                    self._client.create_collection(
                        collection_name=self.collection_name,
                        dimension=self.embedder.dimensions,
                        primary_field_name="id",
                        vector_field_name="vector",
                        metric_type="COSINE",
                        auto_id=True,
                    )
                    logger.info("Collection %s created (dim=%s)", self.collection_name, self.embedder.dimensions)
                self._collection_ready = True
            return self._client

    def shutdown(self) -> None:
        with self._lock:
            if self._client is not None and hasattr(self._client, "close"):
                try:
                    self._client.close()
                except Exception as e:
                    logger.warning("[vector_store:shutdown] close failed: %s", e)
            self._client = None
            self._collection_ready = False

    def similarity_search(
        self,
        query: str,
        *,
        top_k: int,
        threshold: float,
        city: str | None = None,
    ) -> list[SearchHit]:
        """
        Embed query and search. Returns at most top_k hits with similarity >= threshold,
        highest first. With city set, only chunks whose city metadata matches are searched.
        """
        logger.info("[vector_store:similarity_search] IN  query=%r top_k=%d threshold=%.2f city=%s",
                    query[:80], top_k, threshold, city)
        if not query or not query.strip():
            return []
        query_vec = self.embedder.embed([query.strip()])
        client = self.ensure_initialized()
        search_kwargs: dict[str, Any] = {
            "collection_name": self.collection_name,
            "data": query_vec,
            "limit": top_k,
            "output_fields": _OUTPUT_FIELDS,
        }
        if city:
            search_kwargs["filter"] = f'city == "{escape_filter_value(city)}"'
        results = client.search(**search_kwargs)

        # One list of hits per query vector
        raw_hits = results[0] if results else []
        hits: list[SearchHit] = []
        for h in raw_hits:
            score = float(h.get("distance", h.get("score", 0.0)))
            e = h.get("entity") or h
            if score < threshold:
                continue
            metadata = {k: e.get(k) for k in _OUTPUT_FIELDS if k != "text" and e.get(k) is not None}
            hits.append(SearchHit(id=h.get("id", e.get("id")), content=e.get("text", ""),
                                  metadata=metadata, similarity=score))
        hits.sort(key=lambda x: -x.similarity)
        hits = hits[:top_k]
        logger.info("[vector_store:similarity_search] OUT hits=%d scores=%s",
                    len(hits), [round(h.similarity, 4) for h in hits])
        return hits

    def insert_batch(self, documents: list[Document]) -> int:
        """Embed and insert one batch of chunks. Returns the number inserted."""
        if not documents:
            return 0
        vectors = self.embedder.embed([d.page_content for d in documents])
        client = self.ensure_initialized()
        rows = []
        for doc, vec in zip(documents, vectors):
            meta = doc.metadata
            rows.append({
                "vector": vec,
                "text": doc.page_content,
                "name": meta.get("name", ""),
                "city": meta.get("city", ""),
                "tags": ",".join(meta.get("tags") or []),
                "rating": float(meta.get("rating") or 0.0),
                "review_count": int(meta.get("review_count") or 0),
                "source": meta.get("source", ""),
                "chunk_index": int(meta.get("chunk_index", 0)),
            })
        client.insert(collection_name=self.collection_name, data=rows)
        return len(rows)

    def flush(self) -> None:
        client = self.ensure_initialized()
        client.flush(collection_name=self.collection_name)

    def stats(self, limit: int = 16_384) -> KnowledgeStats:
        """Row count comes from collection stats; the city list is read from at most limit rows."""
        client = self.ensure_initialized()
        row_count = int(client.get_collection_stats(collection_name=self.collection_name).get("row_count", 0))
        rows = client.query(
            collection_name=self.collection_name,
            filter="",
            limit=limit,
            output_fields=["city"],
        )
        cities = sorted({(r.get("city") or "").strip() for r in rows if (r.get("city") or "").strip()})
        return KnowledgeStats(total_documents=row_count, total_cities=len(cities), cities=cities)

    def is_empty(self) -> bool:
        client = self.ensure_initialized()
        rows = client.query(collection_name=self.collection_name, filter="", limit=1, output_fields=["id"])
        return not rows

    def clear(self) -> None:
        """Drop the collection; it is recreated empty on next use."""
        client = self.ensure_initialized()
        with self._lock:
            if client.has_collection(self.collection_name):
                client.drop_collection(collection_name=self.collection_name)
                logger.info("Knowledge base cleared: collection %s dropped", self.collection_name)
            self._collection_ready = False
