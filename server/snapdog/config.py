"""配置管理 — Pydantic Settings 从 TOML 加载。"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

_DEFAULT_TOML = Path(__file__).resolve().parent.parent / "config" / "default.toml"


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


class OpenAIConfig(BaseModel):
    api_key: str = ""
    base_url: str | None = None
    vision_model: str = "gpt-4o"
    vision_temperature: float = 0.1
    vision_max_tokens: int = 1000
    generation_model: str = "gpt-4"
    generation_temperature: float = 0.7
    generation_max_tokens: int = 1000
    embedding_model: str = "text-embedding-ada-002"
    timeout: float = 30.0
    # 流水线内部不做自动重试
    max_retries: int = 0


class PineconeConfig(BaseModel):
    api_key: str = ""
    index_host: str = ""
    index_name: str = "snapdog-kb"
    namespace: str = ""
    top_k: int = Field(5, ge=1)
    timeout: float = 30.0


class PipelineConfig(BaseModel):
    stage_timeout: float = Field(30.0, gt=0)
    placeholder_source_url: str = "https://example.com/knowledge-base"


class ImagingConfig(BaseModel):
    target_size_mb: float = 2.0
    max_upload_mb: float = 10.0
    warn_upload_mb: float = 5.0


class IngestConfig(BaseModel):
    chunk_size: int = Field(1000, gt=0)
    chunk_overlap: int = Field(200, ge=0)
    embed_batch_size: int = Field(10, ge=1)
    upsert_batch_size: int = Field(100, ge=1)
    embed_delay: float = 0.1
    upsert_delay: float = 0.2


class Settings(BaseSettings):
    server: ServerConfig = ServerConfig()
    openai: OpenAIConfig = OpenAIConfig()
    pinecone: PineconeConfig = PineconeConfig()
    pipeline: PipelineConfig = PipelineConfig()
    imaging: ImagingConfig = ImagingConfig()
    ingest: IngestConfig = IngestConfig()

    model_config = {"env_prefix": "SNAPDOG_", "env_nested_delimiter": "__"}


def load_settings(toml_path: Path = _DEFAULT_TOML) -> Settings:
    """从 TOML 文件加载配置，环境变量可覆盖。"""
    import sys

    if sys.version_info >= (3, 11):
        import tomllib
    else:
        import tomli as tomllib

    if toml_path.exists():
        with open(toml_path, "rb") as f:
            data = tomllib.load(f)
        return Settings(**data)
    return Settings()
