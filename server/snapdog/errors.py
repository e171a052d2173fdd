"""错误分类 — 各阶段异常与 HTTP 状态码映射。"""

from __future__ import annotations


class VibeCheckError(Exception):
    """所有 Vibe Check 异常的基类。"""

    stage: str = "pipeline"
    status_code: int = 500

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(VibeCheckError):
    """请求字段缺失或格式错误，不重试，直接 400。"""

    stage = "request"
    status_code = 400


class VisionAnalysisError(VibeCheckError):
    """视觉分析失败或 JSON 修复后仍无法解析。"""

    stage = "vision"


class RetrievalDegraded(VibeCheckError):
    """检索降级 — 只记录日志，不向调用方暴露。"""

    stage = "retrieval"


class ReportGenerationError(VibeCheckError):
    """报告生成失败或 JSON 修复后仍无法解析。"""

    stage = "generation"


class UpstreamServiceError(VibeCheckError):
    """外部调用抛出的未预期异常。"""


class ImageProcessingError(Exception):
    """图片压缩/读取失败。"""


class JSONRepairError(ValueError):
    """LLM 输出经过两级修复后仍不是合法 JSON 对象。"""
