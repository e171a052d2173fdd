"""向量索引客户端 — Pinecone 数据面 REST API（query / upsert / stats）。"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from snapdog.config import PineconeConfig

logger = logging.getLogger(__name__)

_API_VERSION = "2024-07"


class PineconeIndex:
    """单个 Pinecone 索引的异步 HTTP 客户端。"""

    def __init__(
        self,
        config: PineconeConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._healthy: bool = False

    async def start(self) -> None:
        if not self.config.index_host:
            logger.warning("Pinecone index host not configured, retrieval will degrade")
        host = self.config.index_host
        if host and not host.startswith("http"):
            host = f"https://{host}"
        self._client = httpx.AsyncClient(
            base_url=host,
            headers={
                "Api-Key": self.config.api_key,
                "Content-Type": "application/json",
                "X-Pinecone-API-Version": _API_VERSION,
            },
            timeout=httpx.Timeout(self.config.timeout),
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def is_healthy(self) -> bool:
        return self._healthy

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self._client:
            raise RuntimeError("Pinecone client not started")
        if not self.config.index_host:
            raise RuntimeError("Pinecone index host not configured")
        resp = await self._client.post(path, json=payload)
        resp.raise_for_status()
        return resp.json()

    async def query(
        self,
        vector: list[float],
        top_k: int | None = None,
        include_metadata: bool = True,
    ) -> list[dict[str, Any]]:
        """按向量查询 top_k 近邻，返回 matches 列表（id / score / metadata）。"""
        payload: dict[str, Any] = {
            "vector": vector,
            "topK": top_k or self.config.top_k,
            "includeMetadata": include_metadata,
        }
        if self.config.namespace:
            payload["namespace"] = self.config.namespace
        data = await self._post("/query", payload)
        return data.get("matches") or []

    async def upsert(self, vectors: list[dict[str, Any]]) -> int:
        """写入向量（id / values / metadata），返回写入数量。"""
        payload: dict[str, Any] = {"vectors": vectors}
        if self.config.namespace:
            payload["namespace"] = self.config.namespace
        data = await self._post("/vectors/upsert", payload)
        return int(data.get("upsertedCount", 0))

    async def describe_index_stats(self) -> dict[str, Any]:
        return await self._post("/describe_index_stats", {})

    async def health_check(self) -> bool:
        """调用 describe_index_stats 检查索引可达。"""
        try:
            await self.describe_index_stats()
            self._healthy = True
        except (httpx.HTTPError, RuntimeError) as e:
            logger.warning("Pinecone health check failed: %s", e)
            self._healthy = False
        return self._healthy
