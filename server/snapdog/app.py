"""FastAPI 应用工厂 + lifespan。"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from snapdog.config import Settings, load_settings
from snapdog.errors import ValidationError, VibeCheckError
from snapdog.pipeline.generator import ReportGenerator
from snapdog.pipeline.llm import LLMClient
from snapdog.pipeline.orchestrator import Orchestrator
from snapdog.pipeline.retriever import KnowledgeRetriever
from snapdog.pipeline.vision import VisionAnalyzer
from snapdog.protocol import ErrorResponse, parse_vibe_check_request
from snapdog.vectorstore import PineconeIndex

logger = logging.getLogger(__name__)

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}
PREFLIGHT_HEADERS = {
    **CORS_HEADERS,
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}
PIPELINE_FAILED = "Check Vibe RAG failed"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """启动/关闭生命周期管理。"""
    settings: Settings = app.state.settings

    # 1. 日志
    logging.basicConfig(
        level=getattr(logging, settings.server.log_level),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    # 2. LLM
    llm = LLMClient(settings.openai, client=app.state.openai_client)
    await llm.start()

    # 3. 向量索引
    index = app.state.index or PineconeIndex(settings.pinecone)
    await index.start()

    # 4. 三个阶段
    vision = VisionAnalyzer(settings.openai, llm)
    retriever = KnowledgeRetriever(settings.pinecone, llm, index)
    generator = ReportGenerator(settings.openai, llm)

    # 5. Orchestrator
    orchestrator = Orchestrator(vision, retriever, generator, settings.pipeline)

    app.state.llm = llm
    app.state.index = index
    app.state.orchestrator = orchestrator
    logger.info("SnapDog vibe check server ready (index=%s)", settings.pinecone.index_name)

    yield

    # Shutdown (reverse order)
    await index.close()
    await llm.close()


def _error(status_code: int, error: str, details: str | None = None) -> JSONResponse:
    return JSONResponse(
        ErrorResponse(error=error, details=details).to_wire(),
        status_code=status_code,
        headers=CORS_HEADERS,
    )


def create_app(
    settings: Settings | None = None,
    *,
    openai_client=None,
    index: PineconeIndex | None = None,
) -> FastAPI:
    """创建 FastAPI 应用。openai_client / index 可注入，便于测试替换。"""
    if settings is None:
        settings = load_settings()

    app = FastAPI(title="SnapDog Vibe Check", lifespan=lifespan)
    app.state.settings = settings
    app.state.openai_client = openai_client
    app.state.index = index

    @app.options("/check-vibe-rag")
    async def check_vibe_rag_preflight():
        return PlainTextResponse("ok", headers=PREFLIGHT_HEADERS)

    @app.post("/check-vibe-rag")
    async def check_vibe_rag(request: Request):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            body = None

        try:
            vibe_request = parse_vibe_check_request(body)
        except ValidationError as e:
            return _error(e.status_code, str(e))

        logger.info("Processing vibe check for user %s", vibe_request.user_id)
        orchestrator: Orchestrator = app.state.orchestrator
        try:
            result = await orchestrator.run(vibe_request)
        except VibeCheckError as e:
            return _error(500, PIPELINE_FAILED, str(e))
        except Exception as e:
            logger.exception("Unexpected vibe check error for user %s", vibe_request.user_id)
            return _error(500, PIPELINE_FAILED, str(e))

        return JSONResponse(result.to_wire(), headers=CORS_HEADERS)

    @app.get("/health")
    async def health():
        index_ok = False
        if hasattr(app.state, "orchestrator"):
            index_ok = await app.state.index.health_check()
        return {
            "status": "ok",
            "index": {"name": settings.pinecone.index_name, "reachable": index_ok},
        }

    return app
