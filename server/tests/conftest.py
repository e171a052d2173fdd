"""共享 fixtures — 测试配置, mock OpenAI / LLM / 向量索引, 样例图片与模型输出。"""

from __future__ import annotations

import io
import json
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image

from snapdog.config import Settings, load_settings
from snapdog.protocol import KnowledgeResult, VisionAnalysis

FIXTURES_DIR = Path(__file__).parent / "fixtures"

SAMPLE_REPORT = """\
## 🐕 VIBE CHECK REPORT

### Emotional State Assessment

This pup is clearly happy and relaxed.

### Body Language Breakdown

Loose, wagging tail and soft eyes.

### Behavioral Context

Likely inviting play with a favorite person.

### Comfort & Well-being Level

Very comfortable, 9/10.

### Scientific Backing

Broad, loose tail wags are associated with positive arousal.

### Recommendations

Keep the play session going and offer a toy."""


# ────────────────────── OpenAI 响应构造 ──────────────────────


def _chat_response(content: str | None) -> SimpleNamespace:
    """构造形如 ChatCompletion 的对象。"""
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _embedding_response(vectors: list[list[float]]) -> SimpleNamespace:
    """构造形如 CreateEmbeddingResponse 的对象，index 故意倒序。"""
    data = [SimpleNamespace(index=i, embedding=v) for i, v in enumerate(vectors)]
    return SimpleNamespace(data=list(reversed(data)))


def _jpeg(width: int = 64, height: int = 48, color=(200, 120, 40)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="JPEG")
    return buf.getvalue()


# ────────────────────── Fixtures ──────────────────────


@pytest.fixture
def test_config() -> Settings:
    """加载测试专用配置。"""
    return load_settings(FIXTURES_DIR / "test_config.toml")


@pytest.fixture
def vision_payload() -> dict:
    return {
        "bodyLanguage": "tail wagging",
        "mood": "happy",
        "behavior": "playful",
        "confidence": 0.9,
    }


@pytest.fixture
def vision_json(vision_payload) -> str:
    return json.dumps(vision_payload)


@pytest.fixture
def report_json() -> str:
    return json.dumps(
        {
            "short_summary": "A happy pup, wiggling with playful joy today!",
            "detailed_report": SAMPLE_REPORT,
        }
    )


@pytest.fixture
def sample_analysis(vision_payload) -> VisionAnalysis:
    return VisionAnalysis.model_validate(vision_payload)


@pytest.fixture
def sample_knowledge() -> KnowledgeResult:
    return KnowledgeResult(
        content=["Dogs wag their tails broadly when happy.", "Play bows invite play."],
        scores=[0.92, 0.81],
        sources=["https://example.org/tail-wagging", "https://example.org/play-bow"],
    )


@pytest.fixture
def mock_openai() -> MagicMock:
    """Mock AsyncOpenAI — chat.completions.create / embeddings.create。"""
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=_chat_response("{}"))
    client.embeddings.create = AsyncMock(
        return_value=_embedding_response([[0.1, 0.2, 0.3]])
    )
    client.close = AsyncMock()
    return client


@pytest.fixture
def mock_llm() -> MagicMock:
    """Mock LLMClient。"""
    llm = MagicMock()
    llm.chat = AsyncMock(return_value="{}")
    llm.embed = AsyncMock(return_value=[[0.1, 0.2, 0.3]])
    llm.start = AsyncMock()
    llm.close = AsyncMock()
    return llm


@pytest.fixture
def mock_index() -> MagicMock:
    """Mock PineconeIndex — 默认零命中。"""
    index = MagicMock()
    index.start = AsyncMock()
    index.close = AsyncMock()
    index.query = AsyncMock(return_value=[])
    index.upsert = AsyncMock(side_effect=lambda vectors: len(vectors))
    index.describe_index_stats = AsyncMock(
        return_value={"totalVectorCount": 0, "dimension": 3, "indexFullness": 0.0}
    )
    index.health_check = AsyncMock(return_value=True)
    return index


@pytest.fixture
def jpeg_bytes() -> bytes:
    return _jpeg()


@pytest.fixture
def chat_response():
    """返回 ChatCompletion 构造函数。"""
    return _chat_response


@pytest.fixture
def embedding_response():
    return _embedding_response


@pytest.fixture
def make_jpeg():
    """返回 JPEG 生成函数 (width, height, color)。"""
    return _jpeg
