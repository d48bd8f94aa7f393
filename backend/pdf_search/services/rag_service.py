"""RAG service: embedding, two-tier Qdrant storage, and passage retrieval.

Vectors live in one of two tiers:

- the durable tier, a Qdrant server collection shared by every query and
  filtered by ``source_url`` so a document embedded once can be reused;
- the ephemeral tier, an in-process Qdrant owned by a single query
  (``RetrievalRun``) and thrown away when the query finishes.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter
from collections.abc import Sequence

import httpx
from google import genai
from google.genai import types
from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from pdf_search.config import Settings, settings
from pdf_search.models.documents import Chunk, PageUnit, ScoredPassage
from pdf_search.services.document_processor import split_pages

logger = logging.getLogger(__name__)

# --- Embedding ---

_VERTEX_PREDICT_URL = (
    "https://{location}-aiplatform.googleapis.com/v1/projects/{project}"
    "/locations/{location}/publishers/google/models/{model}:predict"
)


class Embedder:
    """Vertex AI text embeddings.

    Uses the REST endpoint when GOOGLE_API_KEY is set, otherwise the
    google-genai SDK with application default credentials.
    """

    def __init__(self, config: Settings = settings, client: genai.Client | None = None) -> None:
        self._settings = config
        self._client = client

    @property
    def dimensions(self) -> int:
        return self._settings.embedding_dimensions

    def _genai_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(
                vertexai=True,
                project=self._settings.gcp_project_id,
                location=self._settings.gcp_location,
            )
        return self._client

    async def _embed_via_api_key(
        self, texts: list[str], task_type: str
    ) -> list[list[float]]:
        """Call the Vertex AI embedding endpoint directly using a GCP API key."""
        url = _VERTEX_PREDICT_URL.format(
            location=self._settings.gcp_location,
            project=self._settings.gcp_project_id,
            model=self._settings.embedding_model,
        )
        body = {
            "instances": [{"content": t, "task_type": task_type} for t in texts],
            "parameters": {"outputDimensionality": self._settings.embedding_dimensions},
        }
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                url, params={"key": self._settings.google_api_key}, json=body, timeout=30
            )
        resp.raise_for_status()
        return [p["embeddings"]["values"] for p in resp.json()["predictions"]]

    async def _embed(self, texts: list[str], task_type: str) -> list[list[float]]:
        if self._settings.google_api_key:
            return await self._embed_via_api_key(texts, task_type)
        response = await self._genai_client().aio.models.embed_content(
            model=self._settings.embedding_model,
            contents=texts,
            config=types.EmbedContentConfig(
                output_dimensionality=self._settings.embedding_dimensions,
                task_type=task_type,
            ),
        )
        return [list(e.values) for e in response.embeddings]

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single text string for query-time search."""
        logger.debug(
            "Embedding query (%d chars): %r",
            len(text),
            text[:100] + ("..." if len(text) > 100 else ""),
        )
        vector = (await self._embed([text], "RETRIEVAL_QUERY"))[0]
        logger.debug("Embedded query -> %d-dim vector", len(vector))
        return vector

    async def embed_documents(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed document chunks in batches of ``embedding_batch_size``."""
        logger.info(
            "Embedding %d texts (model=%s, dims=%d)",
            len(texts),
            self._settings.embedding_model,
            self._settings.embedding_dimensions,
        )
        batch_size = self._settings.embedding_batch_size
        vectors: list[list[float]] = []
        for start in range(0, len(texts), batch_size):
            batch = list(texts[start : start + batch_size])
            vectors.extend(await self._embed(batch, "RETRIEVAL_DOCUMENT"))
        logger.info("Embedded %d texts -> %d vectors", len(texts), len(vectors))
        return vectors


# --- Vector tiers ---


class VectorTier:
    """One Qdrant collection acting as a tier of vector storage."""

    def __init__(self, client: AsyncQdrantClient, collection: str, *, name: str) -> None:
        self.client = client
        self.collection = collection
        self.name = name

    def __repr__(self) -> str:
        return f"VectorTier(name={self.name!r}, collection={self.collection!r})"


def _qdrant_kwargs(config: Settings) -> dict:
    """Build kwargs for the Qdrant client, including api_key if set."""
    if config.qdrant_url == ":memory:":
        return {"location": ":memory:"}
    kwargs: dict = {"url": config.qdrant_url}
    if config.qdrant_api_key:
        kwargs["api_key"] = config.qdrant_api_key
    return kwargs


def create_durable_tier(config: Settings = settings) -> VectorTier:
    return VectorTier(
        AsyncQdrantClient(**_qdrant_kwargs(config)),
        config.qdrant_collection,
        name="durable",
    )


def _url_filter(source_url: str) -> Filter:
    return Filter(
        must=[FieldCondition(key="source_url", match=MatchValue(value=source_url))]
    )


def _point_id(source_url: str, page_number: int, ordinal: int) -> str:
    # Deterministic: re-storing the same document overwrites its points.
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{source_url}:{page_number}:{ordinal}"))


# --- Retrieval engine ---


class RetrievalEngine:
    """Stores and searches chunk embeddings in either tier."""

    def __init__(
        self,
        durable: VectorTier,
        embedder: Embedder,
        config: Settings = settings,
    ) -> None:
        self.durable = durable
        self.embedder = embedder
        self.settings = config
        self._ready: set[str] = set()
        self._create_lock = asyncio.Lock()

    async def create_collection(self, tier: VectorTier, *, index_source_url: bool) -> None:
        await tier.client.create_collection(
            collection_name=tier.collection,
            vectors_config=VectorParams(
                size=self.embedder.dimensions,
                distance=Distance.COSINE,
            ),
        )
        if index_source_url:
            await tier.client.create_payload_index(
                collection_name=tier.collection,
                field_name="source_url",
                field_schema=PayloadSchemaType.KEYWORD,
            )

    async def ensure_collection(self, tier: VectorTier) -> None:
        """Create the tier's collection if it doesn't exist."""
        if tier.collection in self._ready:
            return
        # Concurrent background stores must not race to create it twice.
        async with self._create_lock:
            if tier.collection in self._ready:
                return
            if await tier.client.collection_exists(tier.collection):
                logger.info("Qdrant collection '%s' already exists", tier.collection)
            else:
                await self.create_collection(tier, index_source_url=True)
                logger.info("Created Qdrant collection '%s'", tier.collection)
            self._ready.add(tier.collection)

    async def embed_points(
        self, source_url: str, pages: list[PageUnit]
    ) -> list[PointStruct]:
        """Chunk and embed pages into points usable in either tier."""
        chunks = split_pages(
            pages,
            chunk_size=self.settings.chunk_size,
            chunk_overlap=self.settings.chunk_overlap,
        )
        if not chunks:
            return []
        vectors = await self.embedder.embed_documents([c.text for c in chunks])

        ordinals: Counter[int] = Counter()
        points = []
        for chunk, vector in zip(chunks, vectors, strict=True):
            ordinal = ordinals[chunk.page_number]
            ordinals[chunk.page_number] += 1
            points.append(
                PointStruct(
                    id=_point_id(source_url, chunk.page_number, ordinal),
                    vector=vector,
                    payload={**chunk.model_dump(), "source_url": source_url},
                )
            )
        return points

    async def store(
        self,
        tier: VectorTier,
        source_url: str,
        pages: list[PageUnit],
        *,
        points: list[PointStruct] | None = None,
    ) -> bool:
        """Chunk, embed and upsert pages. Returns False instead of raising.

        ``points`` from an earlier ``embed_points`` call are upserted as-is
        instead of embedding the pages again.
        """
        logger.info("Storing embeddings for %s in %s tier", source_url, tier.name)
        try:
            if points is None:
                points = await self.embed_points(source_url, pages)
            if not points:
                logger.warning("No extractable text in %s, nothing to store", source_url)
                return False
            if tier is self.durable:
                await self.ensure_collection(tier)
            await tier.client.upsert(collection_name=tier.collection, points=points)
        except Exception:
            logger.exception(
                "Error storing embeddings for %s in %s tier", source_url, tier.name
            )
            return False

        logger.info(
            "Stored %d chunks for %s in %s tier", len(points), source_url, tier.name
        )
        return True

    async def retrieve(
        self,
        tier: VectorTier,
        source_url: str,
        query: str,
        top_k: int | None = None,
    ) -> list[ScoredPassage]:
        """Search one document's vectors in a tier.

        With a query, returns up to ``top_k`` chunks by descending similarity.
        Without one, returns up to ``bulk_retrieve_limit`` chunks with score
        0.0. A tier with no data for the URL yields an empty list.
        """
        if top_k is None:
            top_k = self.settings.ephemeral_top_k
        url_filter = _url_filter(source_url)
        try:
            if query.strip():
                query_vector = await self.embedder.embed_query(query)
                results = await tier.client.query_points(
                    collection_name=tier.collection,
                    query=query_vector,
                    query_filter=url_filter,
                    score_threshold=self.settings.score_threshold,
                    limit=top_k,
                    with_payload=True,
                )
                hits = [(point.payload, point.score) for point in results.points]
            else:
                records, _ = await tier.client.scroll(
                    collection_name=tier.collection,
                    scroll_filter=url_filter,
                    limit=self.settings.bulk_retrieve_limit,
                    with_payload=True,
                )
                hits = [(record.payload, 0.0) for record in records]
        except Exception as e:
            logger.warning(
                "Retrieval from %s tier failed for %s: %s", tier.name, source_url, e
            )
            return []

        passages = [
            ScoredPassage(chunk=Chunk.model_validate(payload), score=score)
            for payload, score in hits
        ]
        logger.info(
            "Found %d passages for %r in %s (%s tier)",
            len(passages),
            query,
            source_url,
            tier.name,
        )
        for p in passages:
            logger.debug(
                "  score=%.3f page=%d lines=%d-%d",
                p.score,
                p.chunk.page_number,
                p.chunk.lines_from,
                p.chunk.lines_to,
            )
        return passages

    def open_run(self) -> RetrievalRun:
        return RetrievalRun(self)

    async def aclose(self) -> None:
        await self.durable.client.close()


class RetrievalRun:
    """Ephemeral tier for one query.

    Each document, or page group of a large document, is stored and searched
    in its own collection, so concurrent branches never see each other's
    vectors. Call ``aclose`` when the query is done.
    """

    def __init__(self, engine: RetrievalEngine) -> None:
        self._engine = engine
        self._client = AsyncQdrantClient(location=":memory:")
        self._embedded: dict[str, list[PointStruct]] = {}
        self._closed = False

    async def _rank_group(
        self,
        source_url: str,
        pages: list[PageUnit],
        query: str,
        embedded: list[PointStruct],
    ) -> list[ScoredPassage]:
        points = await self._engine.embed_points(source_url, pages)
        embedded.extend(points)
        if not points:
            return []
        tier = VectorTier(
            self._client, f"ephemeral-{uuid.uuid4().hex}", name="ephemeral"
        )
        await self._engine.create_collection(tier, index_source_url=False)
        try:
            # Store completes before retrieve is issued.
            if not await self._engine.store(tier, source_url, pages, points=points):
                return []
            return await self._engine.retrieve(
                tier, source_url, query, top_k=self._engine.settings.ephemeral_top_k
            )
        finally:
            await self._client.delete_collection(collection_name=tier.collection)

    async def find_relevant_passages(
        self, source_url: str, pages: list[PageUnit], query: str
    ) -> list[ScoredPassage]:
        """Rank a document's chunks against the query.

        Documents above ``large_document_page_threshold`` pages are split into
        groups of ``page_group_size`` pages that are embedded and searched
        concurrently; their results are concatenated in group order. A failed
        group is logged and contributes nothing.
        """
        config = self._engine.settings
        if len(pages) <= config.large_document_page_threshold:
            groups = [pages]
        else:
            size = config.page_group_size
            groups = [pages[i : i + size] for i in range(0, len(pages), size)]
            logger.info(
                "Processing large PDF %s with %d pages in %d groups",
                source_url,
                len(pages),
                len(groups),
            )

        embedded: list[PointStruct] = []
        results = await asyncio.gather(
            *(self._rank_group(source_url, group, query, embedded) for group in groups),
            return_exceptions=True,
        )
        passages: list[ScoredPassage] = []
        complete = True
        for idx, result in enumerate(results):
            if isinstance(result, BaseException):
                complete = False
                logger.error(
                    "Page group %d of %s failed: %s", idx + 1, source_url, result
                )
                continue
            passages.extend(result)
        if complete:
            self._embedded[source_url] = embedded
        return passages

    def embedded_points(self, source_url: str) -> list[PointStruct] | None:
        """Points embedded for every page of the document, or None if a group failed."""
        return self._embedded.get(source_url)

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self._client.close()
