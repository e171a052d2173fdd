"""流水线编排 — 视觉分析 → 知识检索 → 报告生成 串联。"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import TYPE_CHECKING

from snapdog.errors import (
    ReportGenerationError,
    UpstreamServiceError,
    VibeCheckError,
    VisionAnalysisError,
)
from snapdog.protocol import KnowledgeResult, VibeCheckResponse

if TYPE_CHECKING:
    from snapdog.config import PipelineConfig
    from snapdog.pipeline.generator import ReportGenerator
    from snapdog.pipeline.retriever import KnowledgeRetriever
    from snapdog.pipeline.vision import VisionAnalyzer
    from snapdog.protocol import VibeCheckRequest

logger = logging.getLogger(__name__)


class PipelineState(enum.Enum):
    RECEIVED = "received"
    ANALYZING = "analyzing"
    RETRIEVING = "retrieving"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


_TERMINAL = {PipelineState.COMPLETED, PipelineState.FAILED}

_VALID_TRANSITIONS = {
    PipelineState.RECEIVED: {PipelineState.ANALYZING, PipelineState.FAILED},
    PipelineState.ANALYZING: {PipelineState.RETRIEVING, PipelineState.FAILED},
    PipelineState.RETRIEVING: {PipelineState.GENERATING, PipelineState.FAILED},
    PipelineState.GENERATING: {PipelineState.COMPLETED, PipelineState.FAILED},
    PipelineState.COMPLETED: set(),
    PipelineState.FAILED: set(),
}


class PipelineRun:
    """单次请求的流水线状态，请求结束即丢弃。"""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        self.state: PipelineState = PipelineState.RECEIVED
        self.history: list[PipelineState] = [PipelineState.RECEIVED]
        self.error: VibeCheckError | None = None
        self.started_at: float = time.monotonic()

    def transition_to(self, new_state: PipelineState) -> None:
        """状态机转换，校验合法路径。终态之后不可再转换。"""
        allowed = _VALID_TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            raise ValueError(
                f"Invalid state transition: {self.state.value} → {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)

    def fail(self, error: VibeCheckError) -> None:
        self.error = error
        self.transition_to(PipelineState.FAILED)

    @property
    def is_terminal(self) -> bool:
        return self.state in _TERMINAL

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at


class Orchestrator:
    """视觉 → 检索 → 生成 流水线编排器。无跨请求状态。"""

    def __init__(
        self,
        vision: VisionAnalyzer,
        retriever: KnowledgeRetriever,
        generator: ReportGenerator,
        config: PipelineConfig,
    ) -> None:
        self.vision = vision
        self.retriever = retriever
        self.generator = generator
        self.config = config

    async def _bounded(self, coro, stage_error: type[VibeCheckError], stage: str):
        """限时执行单个阶段。超时即该阶段失败；其它非阶段异常包装为 UpstreamServiceError。"""
        try:
            return await asyncio.wait_for(coro, timeout=self.config.stage_timeout)
        except VibeCheckError:
            raise
        except asyncio.TimeoutError as e:
            raise stage_error(
                f"{stage} timed out after {self.config.stage_timeout:g}s", stage=stage
            ) from e
        except Exception as e:
            raise UpstreamServiceError(f"{stage} failed: {e}", stage=stage) from e

    async def _retrieve(self, run: PipelineRun, analysis) -> KnowledgeResult:
        try:
            return await asyncio.wait_for(
                self.retriever.retrieve(analysis), timeout=self.config.stage_timeout
            )
        except Exception as e:
            # 检索阶段 fail-open
            logger.warning("Retrieval degraded for user %s: %s", run.user_id, e)
            return KnowledgeResult.empty()

    async def run(self, request: VibeCheckRequest, run: PipelineRun | None = None) -> VibeCheckResponse:
        """执行完整流水线。任何致命阶段失败都会抛出，不会返回部分结果。"""
        run = run or PipelineRun(request.user_id)
        logger.info("Vibe check started for user %s", run.user_id)

        try:
            # 1. 视觉分析
            run.transition_to(PipelineState.ANALYZING)
            analysis = await self._bounded(
                self.vision.analyze(request.image_base64), VisionAnalysisError, "vision"
            )

            # 2. 知识检索
            run.transition_to(PipelineState.RETRIEVING)
            knowledge = await self._retrieve(run, analysis)

            # 3. 报告生成
            run.transition_to(PipelineState.GENERATING)
            report = await self._bounded(
                self.generator.generate(analysis, knowledge),
                ReportGenerationError,
                "generation",
            )

            response = VibeCheckResponse(
                short_summary=report.short_summary,
                detailed_report=report.detailed_report,
                source_url=knowledge.sources[0]
                if knowledge.sources
                else self.config.placeholder_source_url,
                confidence=analysis.confidence,
                analysis=analysis,
            )
        except VibeCheckError as e:
            logger.error(
                "Vibe check failed for user %s at %s: %s", run.user_id, e.stage, e
            )
            run.fail(e)
            raise

        run.transition_to(PipelineState.COMPLETED)
        logger.info(
            "Vibe check completed for user %s in %.2fs (%d sources)",
            run.user_id,
            run.elapsed,
            len(knowledge.sources),
        )
        return response
