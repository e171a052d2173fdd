"""知识库导入 — 加载 → 切分 → 向量化 → 写入索引 → 校验。"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from snapdog.knowledge.articles import KnowledgeChunk, chunk_article, load_articles

if TYPE_CHECKING:
    from pathlib import Path

    from snapdog.config import IngestConfig
    from snapdog.pipeline.llm import LLMClient
    from snapdog.vectorstore import PineconeIndex

logger = logging.getLogger(__name__)

VERIFY_QUERY = "dog play behavior"


@dataclass
class IngestReport:
    articles: int = 0
    chunks: int = 0
    vectors: int = 0
    upserted: int = 0
    total_vector_count: int | None = None
    dimension: int | None = None
    sample_titles: list[str] = field(default_factory=list)


def _batches(items: list[Any], size: int) -> list[list[Any]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class KnowledgeIngester:
    def __init__(self, config: IngestConfig, llm: LLMClient, index: PineconeIndex) -> None:
        self.config = config
        self.llm = llm
        self.index = index

    def chunk(self, articles) -> list[KnowledgeChunk]:
        chunks: list[KnowledgeChunk] = []
        for article in articles:
            article_chunks = chunk_article(
                article, self.config.chunk_size, self.config.chunk_overlap
            )
            logger.info("Created %d chunks for: %s", len(article_chunks), article.title)
            chunks.extend(article_chunks)
        return chunks

    async def embed(self, chunks: list[KnowledgeChunk]) -> list[dict[str, Any]]:
        vectors: list[dict[str, Any]] = []
        batches = _batches(chunks, self.config.embed_batch_size)
        for n, batch in enumerate(batches, 1):
            embeddings = await self.llm.embed([c.text for c in batch])
            if len(embeddings) != len(batch):
                raise RuntimeError(
                    f"Embedding count mismatch: got {len(embeddings)} for {len(batch)} chunks"
                )
            vectors.extend(
                {"id": c.id, "values": values, "metadata": c.metadata}
                for c, values in zip(batch, embeddings)
            )
            logger.info("Embedded batch %d/%d", n, len(batches))
            if self.config.embed_delay:
                await asyncio.sleep(self.config.embed_delay)
        return vectors

    async def upsert(self, vectors: list[dict[str, Any]]) -> int:
        upserted = 0
        batches = _batches(vectors, self.config.upsert_batch_size)
        for n, batch in enumerate(batches, 1):
            upserted += await self.index.upsert(batch)
            logger.info("Upserted batch %d/%d", n, len(batches))
            if self.config.upsert_delay:
                await asyncio.sleep(self.config.upsert_delay)
        return upserted

    async def verify(self, report: IngestReport) -> None:
        stats = await self.index.describe_index_stats()
        report.total_vector_count = stats.get("totalVectorCount")
        report.dimension = stats.get("dimension")
        logger.info(
            "Index stats: vectors=%s dimension=%s fullness=%s",
            report.total_vector_count,
            report.dimension,
            stats.get("indexFullness"),
        )

        [vector] = await self.llm.embed([VERIFY_QUERY])
        matches = await self.index.query(vector, top_k=3)
        for i, match in enumerate(matches, 1):
            title = (match.get("metadata") or {}).get("title", "?")
            report.sample_titles.append(title)
            logger.info("%d. %s (score: %.3f)", i, title, match.get("score") or 0.0)

    async def ingest(self, directory: Path) -> IngestReport:
        """完整导入流程，任一步失败直接抛出。"""
        logger.info("Starting knowledge base ingestion from %s", directory)
        report = IngestReport()

        articles = load_articles(directory)
        report.articles = len(articles)
        logger.info("Loaded %d articles", report.articles)

        chunks = self.chunk(articles)
        report.chunks = len(chunks)

        vectors = await self.embed(chunks)
        report.vectors = len(vectors)

        report.upserted = await self.upsert(vectors)
        await self.verify(report)

        logger.info("Knowledge base ingestion completed: %s", report)
        return report
