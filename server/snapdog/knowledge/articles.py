"""知识库文章 — JSON 加载与递归字符切分。"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from langchain_text_splitters import RecursiveCharacterTextSplitter

logger = logging.getLogger(__name__)

DEFAULT_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ". ", "! ", "? ", " ", "")


@dataclass
class KnowledgeArticle:
    title: str
    source_url: str
    content: str
    topics: list[str] = field(default_factory=list)
    source: str = ""
    date_added: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KnowledgeArticle:
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class KnowledgeChunk:
    id: str
    text: str
    metadata: dict[str, Any]


def load_articles(directory: Path) -> list[KnowledgeArticle]:
    """读取目录下所有 *.json 文章，按文件名排序。"""
    articles: list[KnowledgeArticle] = []
    for path in sorted(directory.glob("*.json")):
        data = json.loads(path.read_text(encoding="utf-8"))
        article = KnowledgeArticle.from_dict(data)
        articles.append(article)
        logger.info("Loaded article: %s", article.title)
    return articles


def slugify(title: str) -> str:
    return re.sub(r"[^a-z0-9]", "-", title.lower())


def split_text(
    text: str,
    chunk_size: int = 1000,
    chunk_overlap: int = 200,
    separators: tuple[str, ...] = DEFAULT_SEPARATORS,
) -> list[str]:
    """递归字符切分：优先按段落，其次按行、句子、空格，最后按字符。"""
    if not text.strip():
        return []
    splitter = RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        separators=list(separators),
    )
    return splitter.split_text(text)


def chunk_article(
    article: KnowledgeArticle, chunk_size: int = 1000, chunk_overlap: int = 200
) -> list[KnowledgeChunk]:
    """切分单篇文章。metadata 携带 content/source 供检索阶段读取。"""
    texts = split_text(article.content, chunk_size, chunk_overlap)
    slug = slugify(article.title)
    return [
        KnowledgeChunk(
            id=f"{slug}-chunk-{i}",
            text=text,
            metadata={
                "title": article.title,
                "source_url": article.source_url,
                "source": article.source_url or article.source or "Unknown",
                "source_name": article.source,
                "topics": list(article.topics),
                "date_added": article.date_added,
                "chunk_index": i,
                "total_chunks": len(texts),
                "content": text,
            },
        )
        for i, text in enumerate(texts)
    ]
