"""图片预处理 — 上传前把照片压缩为尺寸/质量受限的 base64 JPEG。"""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Union

from PIL import Image, ImageOps, UnidentifiedImageError

from snapdog.errors import ImageProcessingError

logger = logging.getLogger(__name__)

ImageSource = Union[str, Path, bytes]

_MB = 1024 * 1024
_PIL_FORMATS = {"jpeg": "JPEG", "png": "PNG", "webp": "WEBP"}
_ORIENTATION_TAG = 0x0112
_IMAGE_ERRORS = (OSError, UnidentifiedImageError, ValueError, Image.DecompressionBombError)


@dataclass
class CompressionConfig:
    max_width: int
    max_height: int
    quality: float
    format: Literal["jpeg", "png", "webp"] = "jpeg"
    max_file_size_mb: float = 2.0


@dataclass
class CompressionResult:
    compressed_base64: str
    original_size_kb: float
    compressed_size_kb: float
    compression_ratio: float
    original_dimensions: tuple[int, int] = (0, 0)
    compressed_dimensions: tuple[int, int] = (0, 0)
    fallback: bool = False


@dataclass
class ImageInfo:
    width: int
    height: int
    size_kb: float

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height else 0.0


@dataclass
class ImageValidation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


DEFAULT_COMPRESSION_CONFIG = CompressionConfig(
    max_width=1024, max_height=1024, quality=0.8, format="jpeg", max_file_size_mb=2.0
)


def _read_bytes(image: ImageSource) -> bytes:
    if isinstance(image, bytes):
        return image
    return Path(image).read_bytes()


def _open(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    # 按 EXIF 旋转，手机照片常见
    return ImageOps.exif_transpose(img)


def _oriented_size(data: bytes) -> tuple[int, int]:
    """显示方向下的宽高。EXIF 方向 5-8 表示旋转 90°，宽高互换。"""
    with Image.open(io.BytesIO(data)) as img:
        width, height = img.size
        if img.getexif().get(_ORIENTATION_TAG) in (5, 6, 7, 8):
            return height, width
    return width, height


def get_image_info(image: ImageSource) -> ImageInfo:
    """读取尺寸与文件大小，不修改图片。"""
    data = _read_bytes(image)
    try:
        width, height = _oriented_size(data)
    except _IMAGE_ERRORS as e:
        raise ImageProcessingError(f"Failed to get image info: {e}") from e
    return ImageInfo(width=width, height=height, size_kb=len(data) / 1024)


def needs_compression(image: ImageSource, threshold_mb: float = 2.0) -> bool:
    """文件大小超过阈值则需要压缩。无法判断时默认压缩。"""
    try:
        return len(_read_bytes(image)) / _MB > threshold_mb
    except OSError as e:
        logger.warning("Failed to check if compression is needed: %s", e)
        return True


def calculate_optimal_compression(
    image: ImageSource,
    target_size_mb: float = 2.0,
    *,
    max_edge: int = 1024,
    light_max_edge: int = 1200,
    max_area_edge: int = 800,
) -> CompressionConfig:
    """根据当前大小计算压缩参数。

    已经小于目标：轻量处理（质量 0.9，边长不超过 light_max_edge）。
    超过目标：按超出比例选择质量 0.6/0.7/0.8，长边限制为 max_edge，
    面积仍超过 max_area_edge² 时再等比缩小。
    """
    try:
        data = _read_bytes(image)
        width, height = _oriented_size(data)
    except _IMAGE_ERRORS as e:
        logger.warning("Failed to calculate optimal compression, using defaults: %s", e)
        return DEFAULT_COMPRESSION_CONFIG

    current_mb = len(data) / _MB
    if current_mb <= target_size_mb:
        return CompressionConfig(
            max_width=min(width, light_max_edge),
            max_height=min(height, light_max_edge),
            quality=0.9,
            max_file_size_mb=target_size_mb,
        )

    ratio = target_size_mb / current_mb
    if ratio < 0.5:
        quality = 0.6
    elif ratio < 0.7:
        quality = 0.7
    else:
        quality = 0.8

    aspect = width / height
    if width > height:
        new_width = min(width, max_edge)
        new_height = round(new_width / aspect)
    else:
        new_height = min(height, max_edge)
        new_width = round(new_height * aspect)

    max_area = max_area_edge * max_area_edge
    if new_width * new_height > max_area:
        scale = math.sqrt(max_area / (new_width * new_height))
        new_width = round(new_width * scale)
        new_height = round(new_height * scale)

    return CompressionConfig(
        max_width=max(new_width, 1),
        max_height=max(new_height, 1),
        quality=quality,
        max_file_size_mb=target_size_mb,
    )


def compress_image(
    image: ImageSource, config: CompressionConfig = DEFAULT_COMPRESSION_CONFIG
) -> CompressionResult:
    """按配置缩放并重新编码，返回 base64 与压缩信息。"""
    try:
        data = _read_bytes(image)
        img = _open(data)
        original_dims = img.size

        img.thumbnail((config.max_width, config.max_height), Image.Resampling.LANCZOS)
        fmt = _PIL_FORMATS[config.format]
        if fmt == "JPEG" and img.mode != "RGB":
            img = img.convert("RGB")

        buf = io.BytesIO()
        save_kwargs = {}
        if fmt in ("JPEG", "WEBP"):
            save_kwargs["quality"] = round(config.quality * 100)
        if fmt == "JPEG":
            save_kwargs["optimize"] = True
        img.save(buf, format=fmt, **save_kwargs)
        compressed = buf.getvalue()
    except _IMAGE_ERRORS as e:
        logger.error("Image compression failed: %s", e)
        raise ImageProcessingError(f"Failed to compress image: {e}") from e

    original_kb = len(data) / 1024
    compressed_kb = len(compressed) / 1024
    return CompressionResult(
        compressed_base64=base64.b64encode(compressed).decode("ascii"),
        original_size_kb=original_kb,
        compressed_size_kb=compressed_kb,
        compression_ratio=compressed_kb / original_kb if original_kb else 1.0,
        original_dimensions=original_dims,
        compressed_dimensions=img.size,
    )


def _fallback(data: bytes) -> CompressionResult:
    size_kb = len(data) / 1024
    return CompressionResult(
        compressed_base64=base64.b64encode(data).decode("ascii"),
        original_size_kb=size_kb,
        compressed_size_kb=size_kb,
        compression_ratio=1.0,
        fallback=True,
    )


def optimize_image_for_api(image: ImageSource, target_size_mb: float = 2.0) -> CompressionResult:
    """自动选择参数并压缩。处理失败时退回原图 base64，不向调用方抛出。

    只有原始字节本身无法读取（例如路径不存在）时才抛 OSError。
    """
    data = _read_bytes(image)
    try:
        config = calculate_optimal_compression(data, target_size_mb)
        result = compress_image(data, config)
        # 仍然超出目标则再降一档
        if result.compressed_size_kb / 1024 > target_size_mb:
            smaller = CompressionConfig(
                max_width=800, max_height=800, quality=0.6, max_file_size_mb=target_size_mb
            )
            result = compress_image(data, smaller)
    except ImageProcessingError as e:
        logger.warning("Image optimization failed, falling back to original: %s", e)
        return _fallback(data)

    logger.info(
        "Image optimized: %.1fKB → %.1fKB (%.1f%%)",
        result.original_size_kb,
        result.compressed_size_kb,
        result.compression_ratio * 100,
    )
    return result


async def optimize_image_for_api_async(
    image: ImageSource, target_size_mb: float = 2.0
) -> CompressionResult:
    """在线程中执行压缩，避免阻塞事件循环。"""
    return await asyncio.to_thread(optimize_image_for_api, image, target_size_mb)


def validate_image_base64(
    image_base64: str, max_mb: float = 10.0, warn_mb: float = 5.0
) -> ImageValidation:
    """上传前的基础校验：data URL 前缀、base64 合法性、大小上限。"""
    errors: list[str] = []
    warnings: list[str] = []

    if not image_base64 or not isinstance(image_base64, str):
        return ImageValidation(False, ["Invalid image data provided"])

    clean = image_base64
    if image_base64.startswith("data:"):
        _, _, clean = image_base64.partition(",")
    if not clean:
        return ImageValidation(False, ["Invalid image format"])

    size_mb = math.ceil(len(clean) * 3 / 4) / _MB
    if size_mb > max_mb:
        errors.append(f"Image file size too large (max {max_mb:g}MB)")
    elif size_mb > warn_mb:
        warnings.append("Large image file (consider using a smaller photo for faster processing)")

    try:
        base64.b64decode(clean, validate=True)
    except (binascii.Error, ValueError):
        errors.append("Invalid base64 image data")
        return ImageValidation(False, errors, warnings)

    return ImageValidation(not errors, errors, warnings)
