"""Vibe Check HTTP 客户端 — 上传前校验/压缩、错误提示映射、置信度分级。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
from pydantic import ValidationError as SchemaError

from snapdog.config import ImagingConfig
from snapdog.imaging import ImageSource, optimize_image_for_api_async, validate_image_base64
from snapdog.protocol import VibeCheckRequest, VibeCheckResponse

logger = logging.getLogger(__name__)

ENDPOINT = "/check-vibe-rag"


class VibeCheckClientError(Exception):
    """面向用户的错误，message 已是可直接展示的文本。"""


# ────────────────────────── 错误提示 ──────────────────────────

_FRIENDLY_RULES: list[tuple[tuple[str, ...], str]] = [
    (
        ("unsupported image format", "image format"),
        "The image format is not supported. Please try a JPEG or PNG photo.",
    ),
    (
        ("no dog detected", "dog not found"),
        "No dog detected in the photo. Please make sure your dog is clearly visible in the image.",
    ),
    (
        ("image too small", "resolution"),
        "The image is too small or blurry. Please try a higher quality photo.",
    ),
    (
        ("network", "connection"),
        "Network connection issue. Please check your internet connection and try again.",
    ),
    (
        ("timeout", "timed out"),
        "Request timed out. Please try again with a smaller image or better connection.",
    ),
    (
        ("500", "internal server error"),
        "Service temporarily unavailable. Please try again in a few moments.",
    ),
]


def friendly_error_message(message: str) -> str:
    """按关键词把服务端/网络错误映射为用户提示，规则按顺序匹配。"""
    lowered = (message or "").lower()
    for needles, friendly in _FRIENDLY_RULES:
        if any(n in lowered for n in needles):
            return friendly
    return f"Unable to analyze the photo: {message or 'Unknown error occurred'}"


# ────────────────────────── 置信度 ──────────────────────────


class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    VERY_LOW = "very_low"


@dataclass(frozen=True)
class ConfidenceLevel:
    level: ConfidenceTier
    message: str
    should_proceed: bool
    show_warning: bool


def process_confidence_level(confidence: float) -> ConfidenceLevel:
    if confidence >= 0.7:
        return ConfidenceLevel(ConfidenceTier.HIGH, "High confidence analysis", True, False)
    if confidence >= 0.5:
        return ConfidenceLevel(
            ConfidenceTier.MEDIUM,
            "Moderate confidence - analysis may be less accurate",
            True,
            True,
        )
    if confidence >= 0.3:
        return ConfidenceLevel(
            ConfidenceTier.LOW, "Low confidence - please try a clearer photo", True, True
        )
    return ConfidenceLevel(
        ConfidenceTier.VERY_LOW, "Image unclear - please try a better photo", False, False
    )


_CONFIDENCE_MESSAGES = {
    ConfidenceTier.HIGH: "",
    ConfidenceTier.MEDIUM: "Analysis completed, but a clearer photo might give better results.",
    ConfidenceTier.LOW: (
        "The photo is a bit unclear. Try taking a photo in better lighting or closer to your dog."
    ),
    ConfidenceTier.VERY_LOW: (
        "The image is too unclear to analyze. Please try a better photo with good lighting."
    ),
}


def confidence_user_message(level: ConfidenceLevel) -> str:
    return _CONFIDENCE_MESSAGES.get(level.level, "")


# ────────────────────────── 客户端 ──────────────────────────


class VibeCheckClient:
    """调用 POST /check-vibe-rag 的异步客户端。"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        imaging: ImagingConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.imaging = imaging or ImagingConfig()
        self._client = httpx.AsyncClient(
            base_url=self.base_url, timeout=httpx.Timeout(timeout), transport=transport
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> VibeCheckClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def analyze(self, image_base64: str, user_id: str) -> VibeCheckResponse:
        request = VibeCheckRequest(image_base64=image_base64, user_id=user_id)
        try:
            resp = await self._client.post(ENDPOINT, json=request.to_wire())
        except httpx.TimeoutException as e:
            raise VibeCheckClientError(friendly_error_message(f"request timeout: {e}")) from e
        except httpx.TransportError as e:
            raise VibeCheckClientError(friendly_error_message(f"network error: {e}")) from e

        if resp.is_error:
            raise VibeCheckClientError(friendly_error_message(_error_text(resp)))

        try:
            data = resp.json()
        except ValueError:
            data = None
        if not data:
            raise VibeCheckClientError(
                "No response received from the analysis service. Please try again."
            )
        try:
            return VibeCheckResponse.model_validate(data)
        except SchemaError as e:
            raise VibeCheckClientError(friendly_error_message(f"Malformed response: {e}")) from e

    async def analyze_with_validation(self, image_base64: str, user_id: str) -> VibeCheckResponse:
        validation = validate_image_base64(
            image_base64, self.imaging.max_upload_mb, self.imaging.warn_upload_mb
        )
        if not validation.is_valid:
            raise VibeCheckClientError(
                f"Image quality validation failed: {', '.join(validation.errors)}"
            )
        if validation.warnings:
            logger.warning("Image quality warnings: %s", validation.warnings)
        return await self.analyze(image_base64, user_id)

    async def analyze_with_optimization(
        self, image: ImageSource, user_id: str
    ) -> VibeCheckResponse:
        """压缩 → 校验 → 分析。"""
        result = await optimize_image_for_api_async(image, self.imaging.target_size_mb)
        if not result.fallback:
            logger.info(
                "Image optimized for API: %.1fKB → %.1fKB",
                result.original_size_kb,
                result.compressed_size_kb,
            )
        return await self.analyze_with_validation(result.compressed_base64, user_id)


def _error_text(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"{resp.status_code} {resp.text}".strip()
    if isinstance(body, dict):
        parts = [str(body.get("error") or ""), str(body.get("details") or "")]
        text = ": ".join(p for p in parts if p)
        if text:
            # 500 响应带上状态码，便于关键词映射
            return f"{resp.status_code} {text}" if resp.status_code >= 500 else text
    return f"{resp.status_code} {resp.text}".strip()
