"""报告生成 — 视觉分析 + 检索片段 → 一句话总结 + Markdown 详细报告。"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from snapdog.errors import JSONRepairError, ReportGenerationError
from snapdog.jsonrepair import robust_json_loads
from snapdog.protocol import GeneratedReport

if TYPE_CHECKING:
    from snapdog.config import OpenAIConfig
    from snapdog.pipeline.llm import LLMClient
    from snapdog.protocol import KnowledgeResult, VisionAnalysis

logger = logging.getLogger(__name__)

REPORT_TITLE = "## 🐕 VIBE CHECK REPORT"

REPORT_SECTIONS: tuple[str, ...] = (
    "Emotional State Assessment",
    "Body Language Breakdown",
    "Behavioral Context",
    "Comfort & Well-being Level",
    "Scientific Backing",
    "Recommendations",
)

SYSTEM_PROMPT = (
    "You are a knowledgeable, certified dog behavior expert and veterinarian who provides "
    "scientifically-backed, friendly insights about dog emotions and behavior. Always base "
    "your analysis on observable evidence and scientific knowledge."
)

_SECTION_HINTS = {
    "Emotional State Assessment": "Analyze the dog's likely emotional state based on visual cues",
    "Body Language Breakdown": "Detail specific body language indicators and their meanings",
    "Behavioral Context": "What might be happening in this situation?",
    "Comfort & Well-being Level": "Rate comfort level and explain indicators",
    "Scientific Backing": "Reference specific knowledge base content to support your analysis",
    "Recommendations": "Provide actionable advice for the dog's well-being or interaction",
}

_HEADER_PATTERN = re.compile(r"^[ \t]*(#{1,6}[ \t]+.*?)[ \t]*$", re.MULTILINE)


def _report_template() -> str:
    parts = [REPORT_TITLE, ""]
    for section in REPORT_SECTIONS:
        parts.extend([f"### {section}", "", f"[{_SECTION_HINTS[section]}]", ""])
    return "\n".join(parts).rstrip()


def build_generation_prompt(analysis: VisionAnalysis, knowledge: KnowledgeResult) -> str:
    matches = knowledge.matches
    knowledge_text = "\n\n".join(m.content for m in matches) or "(no knowledge base content retrieved)"
    sources = ", ".join(m.source for m in matches) or "none"
    return f"""\
You are a certified dog behavior expert and veterinarian analyzing a dog's emotional state and behavior through image analysis.

VISION ANALYSIS:
- Body Language: {analysis.body_language}
- Mood: {analysis.mood}
- Behavior: {analysis.behavior}
- Confidence: {analysis.confidence}

RELEVANT KNOWLEDGE BASE CONTENT (from scientific sources):
{knowledge_text}

SOURCES: {sources}

Based on the vision analysis and the scientific knowledge base content, provide TWO outputs:

1. SHORT_SUMMARY: Generate a playful, descriptive 1 sentence summary (more than 5 words but capped at 15 words) of the dog's vibe (e.g., "A happy pup, calm and curious about the world.", "A curious explorer, ready for adventure!", "Happy tail wagger, soaking in the sights.")

2. DETAILED_REPORT: Generate a structured markdown report explaining the dog's emotional state, body language, and context. Structure it as:

{_report_template()}

**IMPORTANT:**
- Each header (lines starting with ## or ###) must be on its own line, with a blank line before and after.
- Each paragraph must start on a new line after its header, with a blank line before the next header.
- Never split words or headers across lines. Never output stray single letters or broken words.
- The markdown must be valid and render cleanly in any markdown viewer.

Make the detailed report:
- Friendly and accessible to dog owners
- Scientifically accurate based on the knowledge base
- Specific to the visual cues observed
- Helpful and actionable

Return ONLY a JSON object with this structure:
{{
  "short_summary": "Your playful 1 sentence summary here",
  "detailed_report": "Your complete markdown report here"
}}
"""


def normalize_markdown(report: str) -> str:
    """每个标题独占一行，前后各一个空行；合并多余空行。"""
    text = report.replace("\r\n", "\n").strip()
    text = _HEADER_PATTERN.sub(lambda m: f"\n\n{m.group(1)}\n\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def missing_sections(report: str) -> list[str]:
    return [s for s in REPORT_SECTIONS if s not in report]


def word_count(text: str) -> int:
    return len(text.split())


def parse_generated_report(raw: str) -> GeneratedReport:
    data = robust_json_loads(raw)
    summary = data.get("short_summary")
    report = data.get("detailed_report")
    if not isinstance(summary, str) or not summary.strip():
        raise ReportGenerationError("Vibe check generation failed: missing short_summary")
    if not isinstance(report, str) or not report.strip():
        raise ReportGenerationError("Vibe check generation failed: missing detailed_report")
    return GeneratedReport(
        short_summary=" ".join(summary.split()),
        detailed_report=normalize_markdown(report),
    )


class ReportGenerator:
    """生成阶段 — fail-closed。"""

    def __init__(self, config: OpenAIConfig, llm: LLMClient) -> None:
        self.config = config
        self.llm = llm

    async def generate(
        self, analysis: VisionAnalysis, knowledge: KnowledgeResult
    ) -> GeneratedReport:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_generation_prompt(analysis, knowledge)},
        ]
        try:
            raw = await self.llm.chat(
                messages,
                model=self.config.generation_model,
                temperature=self.config.generation_temperature,
                max_tokens=self.config.generation_max_tokens,
            )
            logger.debug("Generation raw response: %s", raw[:500])
            report = parse_generated_report(raw)
        except ReportGenerationError:
            raise
        except JSONRepairError as e:
            logger.error("Generation returned unusable output: %s", e)
            raise ReportGenerationError(f"Vibe check generation failed: {e}") from e
        except Exception as e:
            logger.error("Generation error: %s", e)
            raise ReportGenerationError(f"Vibe check generation failed: {e}") from e

        words = word_count(report.short_summary)
        if not 5 <= words <= 15:
            logger.warning("short_summary has %d words: %r", words, report.short_summary)
        missing = missing_sections(report.detailed_report)
        if missing:
            logger.warning("detailed_report missing sections: %s", ", ".join(missing))
        return report
