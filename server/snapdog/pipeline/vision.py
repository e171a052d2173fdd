"""视觉分析 — 狗狗照片 → 多模态 LLM → 肢体语言/情绪/行为评估。"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError as SchemaError

from snapdog.errors import JSONRepairError, VisionAnalysisError
from snapdog.jsonrepair import robust_json_loads
from snapdog.protocol import VisionAnalysis

if TYPE_CHECKING:
    from snapdog.config import OpenAIConfig
    from snapdog.pipeline.llm import LLMClient

logger = logging.getLogger(__name__)

VISION_PROMPT = """\
You are an expert in canine body language and behavior. Analyze this dog photo and provide a detailed assessment.

Please return a JSON object with the following structure:
{
  "bodyLanguage": "Detailed description of the dog's body language including tail position, ear position, facial expressions, body posture, etc.",
  "mood": "The dog's apparent emotional state (happy, anxious, playful, stressed, etc.)",
  "behavior": "What the dog appears to be doing or trying to communicate",
  "confidence": 0.85
}

Focus on specific, observable cues and be as detailed as possible. The confidence should be between 0 and 1.
Return ONLY the JSON object with exactly these four fields.
"""


def build_vision_messages(image_base64: str) -> list[dict]:
    """组装多模态消息：文本指令 + data URL 图片。"""
    if image_base64.startswith("data:"):
        url = image_base64
    else:
        url = f"data:image/jpeg;base64,{image_base64}"
    return [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": VISION_PROMPT},
                {"type": "image_url", "image_url": {"url": url}},
            ],
        }
    ]


def parse_vision_analysis(raw: str) -> VisionAnalysis:
    """解析并校验视觉分析输出。confidence 缺失或越界直接报错，不做替代。"""
    data = robust_json_loads(raw)
    return VisionAnalysis.model_validate(data)


class VisionAnalyzer:
    """视觉分析阶段。"""

    def __init__(self, config: OpenAIConfig, llm: LLMClient) -> None:
        self.config = config
        self.llm = llm

    async def analyze(self, image_base64: str) -> VisionAnalysis:
        try:
            raw = await self.llm.chat(
                build_vision_messages(image_base64),
                model=self.config.vision_model,
                temperature=self.config.vision_temperature,
                max_tokens=self.config.vision_max_tokens,
            )
            logger.debug("Vision raw response: %s", raw[:500])
            analysis = parse_vision_analysis(raw)
        except (JSONRepairError, SchemaError) as e:
            logger.error("Vision analysis returned unusable output: %s", e)
            raise VisionAnalysisError(f"Vision analysis failed: {e}") from e
        except Exception as e:
            logger.error("Vision analysis error: %s", e)
            raise VisionAnalysisError(f"Vision analysis failed: {e}") from e

        logger.info(
            "Vision analysis: mood=%s confidence=%.2f", analysis.mood, analysis.confidence
        )
        return analysis
