"""测试 knowledge — 文章加载、递归切分、批量向量化/写入、校验查询。"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest

from snapdog.config import IngestConfig
from snapdog.knowledge.__main__ import main as ingest_main
from snapdog.knowledge.articles import (
    KnowledgeArticle,
    chunk_article,
    load_articles,
    slugify,
    split_text,
)
from snapdog.knowledge.ingest import VERIFY_QUERY, IngestReport, KnowledgeIngester


def _article(content: str, **overrides) -> KnowledgeArticle:
    values = {
        "title": "Tail Wagging: What It Means",
        "source_url": "https://example.org/tail",
        "content": content,
        "topics": ["tail", "emotion"],
        "source": "Example Vet Journal",
        "date_added": "2024-05-01",
    }
    values.update(overrides)
    return KnowledgeArticle(**values)


class TestSplitText:
    """递归字符切分。"""

    def test_short_text_single_chunk(self):
        assert split_text("A short paragraph.", chunk_size=100, chunk_overlap=10) == [
            "A short paragraph."
        ]

    def test_empty_text(self):
        assert split_text("   ", chunk_size=100, chunk_overlap=10) == []

    def test_chunks_respect_size(self):
        text = " ".join(f"word{i}" for i in range(200))
        chunks = split_text(text, chunk_size=100, chunk_overlap=20)
        assert len(chunks) > 1
        assert all(len(c) <= 100 for c in chunks)

    def test_paragraphs_preferred(self):
        text = "First paragraph about tails.\n\nSecond paragraph about ears."
        chunks = split_text(text, chunk_size=35, chunk_overlap=0)
        assert chunks == ["First paragraph about tails.", "Second paragraph about ears."]

    def test_overlap_between_chunks(self):
        text = " ".join(f"w{i:03d}" for i in range(60))
        chunks = split_text(text, chunk_size=50, chunk_overlap=20)
        for prev, nxt in zip(chunks, chunks[1:]):
            assert prev.split()[-1] in nxt.split()

    def test_long_word_split_by_characters(self):
        chunks = split_text("x" * 250, chunk_size=100, chunk_overlap=0)
        assert all(len(c) <= 100 for c in chunks)
        assert "".join(chunks) == "x" * 250

    def test_sentence_boundaries_before_spaces(self):
        """没有换行时按句子切分，而不是在句中空格处断开。"""
        chunks = split_text("Dogs wag. Dogs bark. Dogs play.", chunk_size=20, chunk_overlap=0)
        assert len(chunks) == 2
        assert chunks[0] == "Dogs wag. Dogs bark"
        assert chunks[1].endswith("Dogs play.")

    def test_overlap_larger_than_size_rejected(self):
        with pytest.raises(ValueError):
            split_text("abc", chunk_size=10, chunk_overlap=20)


class TestChunkArticle:
    def test_ids_and_metadata(self):
        text = "\n\n".join(f"Paragraph {i} about happy dogs wagging tails." for i in range(10))
        chunks = chunk_article(_article(text), chunk_size=120, chunk_overlap=20)

        assert len(chunks) > 1
        assert chunks[0].id == "tail-wagging--what-it-means-chunk-0"
        assert chunks[-1].id.endswith(f"-chunk-{len(chunks) - 1}")
        meta = chunks[0].metadata
        assert meta["source"] == "https://example.org/tail"
        assert meta["title"] == "Tail Wagging: What It Means"
        assert meta["topics"] == ["tail", "emotion"]
        assert meta["content"] == chunks[0].text
        assert meta["chunk_index"] == 0
        assert meta["total_chunks"] == len(chunks)

    def test_source_falls_back_to_name(self):
        chunks = chunk_article(_article("Some text.", source_url=""))
        assert chunks[0].metadata["source"] == "Example Vet Journal"

    def test_slugify(self):
        assert slugify("Play Bow 101!") == "play-bow-101-"


class TestLoadArticles:
    def test_loads_json_sorted(self, tmp_path):
        (tmp_path / "b.json").write_text(
            json.dumps({"title": "B", "source_url": "u", "content": "c", "extra": 1})
        )
        (tmp_path / "a.json").write_text(
            json.dumps({"title": "A", "source_url": "u", "content": "c"})
        )
        (tmp_path / "notes.txt").write_text("ignored")
        articles = load_articles(tmp_path)
        assert [a.title for a in articles] == ["A", "B"]
        assert articles[0].topics == []


class TestIngester:
    """完整导入流程。"""

    @pytest.fixture
    def articles_dir(self, tmp_path):
        for i in range(3):
            (tmp_path / f"article{i}.json").write_text(
                json.dumps(
                    {
                        "title": f"Article {i}",
                        "source_url": f"https://example.org/{i}",
                        "content": f"Dogs play bow to invite play. Article number {i}.",
                        "topics": ["play"],
                        "source": "Example",
                        "date_added": "2024-01-01",
                    }
                )
            )
        return tmp_path

    @pytest.fixture
    def ingest_config(self) -> IngestConfig:
        return IngestConfig(
            chunk_size=200,
            chunk_overlap=40,
            embed_batch_size=2,
            upsert_batch_size=2,
            embed_delay=0,
            upsert_delay=0,
        )

    async def test_ingest_batches(self, articles_dir, ingest_config, mock_llm, mock_index):
        mock_llm.embed.side_effect = lambda texts: [[0.5, 0.5] for _ in texts]
        mock_index.describe_index_stats.return_value = {"totalVectorCount": 3, "dimension": 2}
        mock_index.query.return_value = [
            {"id": "article-0-chunk-0", "score": 0.91, "metadata": {"title": "Article 0"}}
        ]

        report = await KnowledgeIngester(ingest_config, mock_llm, mock_index).ingest(articles_dir)

        assert report.articles == 3
        assert report.chunks == 3
        assert report.vectors == 3
        assert report.upserted == 3
        assert report.total_vector_count == 3
        assert report.sample_titles == ["Article 0"]

        # 3 个 chunk，每批 2 个：向量化 2 批 + 校验查询 1 次
        embed_calls = [c.args[0] for c in mock_llm.embed.call_args_list]
        assert [len(batch) for batch in embed_calls[:2]] == [2, 1]
        assert embed_calls[-1] == [VERIFY_QUERY]
        assert mock_index.upsert.await_count == 2

        first_vector = mock_index.upsert.call_args_list[0].args[0][0]
        assert first_vector["id"] == "article-0-chunk-0"
        assert first_vector["values"] == [0.5, 0.5]
        assert first_vector["metadata"]["content"].startswith("Dogs play bow")

    async def test_embedding_count_mismatch(
        self, articles_dir, ingest_config, mock_llm, mock_index
    ):
        mock_llm.embed.return_value = [[0.1]]
        with pytest.raises(RuntimeError, match="mismatch"):
            await KnowledgeIngester(ingest_config, mock_llm, mock_index).ingest(articles_dir)
        mock_index.upsert.assert_not_awaited()

    async def test_upsert_failure_propagates(
        self, articles_dir, ingest_config, mock_llm, mock_index
    ):
        mock_llm.embed.side_effect = lambda texts: [[0.5] for _ in texts]
        mock_index.upsert.side_effect = RuntimeError("quota exceeded")
        with pytest.raises(RuntimeError, match="quota"):
            await KnowledgeIngester(ingest_config, mock_llm, mock_index).ingest(articles_dir)


class TestCli:
    """python -m snapdog.knowledge。"""

    def test_missing_directory(self, tmp_path):
        with pytest.raises(SystemExit):
            ingest_main([str(tmp_path / "nope")])

    def test_runs_ingestion(self, tmp_path, mock_llm, mock_index):
        with patch("snapdog.knowledge.__main__.LLMClient", return_value=mock_llm), patch(
            "snapdog.knowledge.__main__.PineconeIndex", return_value=mock_index
        ), patch.object(
            KnowledgeIngester, "ingest", AsyncMock(return_value=IngestReport())
        ) as ingest:
            assert ingest_main([str(tmp_path)]) == 0
        ingest.assert_awaited_once_with(tmp_path)
        mock_index.close.assert_awaited_once()
        mock_llm.close.assert_awaited_once()

    def test_failure_exit_code(self, tmp_path, mock_llm, mock_index):
        with patch("snapdog.knowledge.__main__.LLMClient", return_value=mock_llm), patch(
            "snapdog.knowledge.__main__.PineconeIndex", return_value=mock_index
        ), patch.object(
            KnowledgeIngester, "ingest", AsyncMock(side_effect=RuntimeError("boom"))
        ):
            assert ingest_main([str(tmp_path)]) == 1
        mock_index.close.assert_awaited_once()
