"""LLM 客户端 — OpenAI 对话补全与文本向量化。"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from openai import AsyncOpenAI

if TYPE_CHECKING:
    from snapdog.config import OpenAIConfig

logger = logging.getLogger(__name__)


class LLMClient:
    """AsyncOpenAI 的薄封装，可注入已构造的客户端（测试用假对象）。"""

    def __init__(self, config: OpenAIConfig, client: AsyncOpenAI | None = None) -> None:
        self.config = config
        self._client = client
        self._owns_client = client is None

    async def start(self) -> None:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.config.api_key or None,
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                max_retries=self.config.max_retries,
            )
        logger.info(
            "LLM client ready: vision=%s generation=%s embedding=%s",
            self.config.vision_model,
            self.config.generation_model,
            self.config.embedding_model,
        )

    async def close(self) -> None:
        if self._client and self._owns_client:
            await self._client.close()
            self._client = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            raise RuntimeError("LLM client not started")
        return self._client

    async def chat(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """单次对话补全，返回首个 choice 的文本。空回复视为错误。"""
        response = await self.client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise RuntimeError(f"No response from {model}")
        return content

    async def embed(self, texts: str | list[str]) -> list[list[float]]:
        """批量向量化，按 index 排序返回。"""
        response = await self.client.embeddings.create(
            model=self.config.embedding_model, input=texts
        )
        items = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in items]
