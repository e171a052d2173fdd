"""知识检索 — 视觉分析文本 → 向量 → Pinecone top-K 近邻。失败时降级为空结果。"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from snapdog.errors import RetrievalDegraded
from snapdog.protocol import KnowledgeMatch, KnowledgeResult

if TYPE_CHECKING:
    from snapdog.config import PineconeConfig
    from snapdog.pipeline.llm import LLMClient
    from snapdog.protocol import VisionAnalysis
    from snapdog.vectorstore import PineconeIndex

logger = logging.getLogger(__name__)


def build_query_text(analysis: VisionAnalysis) -> str:
    return f"{analysis.body_language} {analysis.mood} {analysis.behavior}"


def matches_to_knowledge(matches: list[dict[str, Any]]) -> list[KnowledgeMatch]:
    """转换索引 matches。没有 content 的条目跳过，source 缺省为 Unknown。"""
    result: list[KnowledgeMatch] = []
    for match in matches:
        metadata = match.get("metadata") or {}
        content = metadata.get("content")
        if not content:
            continue
        result.append(
            KnowledgeMatch(
                content=str(content),
                score=float(match.get("score") or 0.0),
                source=str(metadata.get("source") or "Unknown"),
            )
        )
    return result


class KnowledgeRetriever:
    """检索阶段 — fail-open。"""

    def __init__(self, config: PineconeConfig, llm: LLMClient, index: PineconeIndex) -> None:
        self.config = config
        self.llm = llm
        self.index = index

    async def _search(self, query: str) -> list[KnowledgeMatch]:
        try:
            vectors = await self.llm.embed(query)
            matches = await self.index.query(
                vectors[0], top_k=self.config.top_k, include_metadata=True
            )
        except Exception as e:
            raise RetrievalDegraded(f"Knowledge retrieval failed: {e}") from e
        return matches_to_knowledge(matches)

    async def retrieve(self, analysis: VisionAnalysis) -> KnowledgeResult:
        query = build_query_text(analysis)
        try:
            matches = await self._search(query)
        except RetrievalDegraded as e:
            logger.warning("%s, continuing without citations", e)
            return KnowledgeResult.empty()

        knowledge = KnowledgeResult.from_matches(matches[: self.config.top_k])
        logger.info("Retrieved %d knowledge base entries", len(knowledge.content))
        return knowledge
