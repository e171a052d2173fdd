"""请求/响应数据模型 — Pydantic 模型，字段名与 HTTP JSON 保持一致。"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError

from snapdog.errors import ValidationError


class _WireModel(BaseModel):
    """JSON 使用 camelCase，Python 侧使用 snake_case。"""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


# ────────────────────── 请求 ──────────────────────

class VibeCheckRequest(_WireModel):
    image_base64: str = Field(alias="imageBase64", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)


# ────────────────────── 阶段产物 ──────────────────────

class VisionAnalysis(_WireModel):
    body_language: str = Field(alias="bodyLanguage")
    mood: str
    behavior: str
    confidence: float = Field(ge=0.0, le=1.0, strict=True)


class KnowledgeMatch(BaseModel):
    content: str
    score: float
    source: str


class KnowledgeResult(BaseModel):
    """检索结果 — 三个平行数组，按相似度降序。"""

    content: list[str] = Field(default_factory=list)
    scores: list[float] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> KnowledgeResult:
        return cls()

    @classmethod
    def from_matches(cls, matches: list[KnowledgeMatch]) -> KnowledgeResult:
        ordered = sorted(matches, key=lambda m: m.score, reverse=True)
        return cls(
            content=[m.content for m in ordered],
            scores=[m.score for m in ordered],
            sources=[m.source for m in ordered],
        )

    @property
    def matches(self) -> list[KnowledgeMatch]:
        return [
            KnowledgeMatch(content=c, score=s, source=src)
            for c, s, src in zip(self.content, self.scores, self.sources)
        ]

    @property
    def is_empty(self) -> bool:
        return not self.content


class GeneratedReport(BaseModel):
    short_summary: str
    detailed_report: str


# ────────────────────── 响应 ──────────────────────

class VibeCheckResponse(_WireModel):
    short_summary: str
    detailed_report: str
    source_url: str = Field(alias="sourceUrl")
    confidence: float = Field(ge=0.0, le=1.0, strict=True)
    analysis: VisionAnalysis


class ErrorResponse(BaseModel):
    error: str
    details: str | None = None

    def to_wire(self) -> dict:
        return self.model_dump(exclude_none=True)


# ────────────────────── 解析 ──────────────────────

MISSING_FIELDS_MESSAGE = "Missing required fields: imageBase64, userId"


def parse_vibe_check_request(data: object) -> VibeCheckRequest:
    """校验请求体。缺字段、空字段或非对象一律视为缺失必填字段。"""
    if not isinstance(data, dict):
        raise ValidationError(MISSING_FIELDS_MESSAGE)
    try:
        return VibeCheckRequest.model_validate(data)
    except SchemaError as e:
        raise ValidationError(MISSING_FIELDS_MESSAGE) from e
