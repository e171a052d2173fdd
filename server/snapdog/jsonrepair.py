"""LLM 输出 JSON 修复 — 去代码块、清洗控制字符、两级解析。"""

from __future__ import annotations

import json
import re
from typing import Any

from snapdog.errors import JSONRepairError

_FENCE_PATTERN = re.compile(r"^```[a-zA-Z]*[ \t]*\r?\n?(.*?)\r?\n?```\s*$", re.DOTALL)
_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")

# 字符串内部需要转义的空白
_STRING_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


def _is_control(ch: str) -> bool:
    code = ord(ch)
    return code < 0x20 or 0x7F <= code <= 0x9F


def strip_code_fence(text: str) -> str:
    """去掉首尾的 ```json ... ``` 代码块包裹。没有包裹则原样返回（去首尾空白）。"""
    stripped = text.strip()
    match = _FENCE_PATTERN.match(stripped)
    if match:
        return match.group(1).strip()
    return stripped


def clean_json_text(text: str) -> str:
    """清洗控制字符。

    字符串字面量内的换行/回车/制表符转义为 \\n \\r \\t，其余控制字符删除；
    字符串外的空白保留，其余控制字符删除。
    """
    out: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
                if _is_control(ch):
                    # 反斜杠后面跟了裸控制字符，去掉反斜杠的效果
                    out.pop()
                    out.append(_STRING_ESCAPES.get(ch, ""))
                    continue
                out.append(ch)
            elif ch == "\\":
                escaped = True
                out.append(ch)
            elif ch == '"':
                in_string = False
                out.append(ch)
            elif ch in _STRING_ESCAPES:
                out.append(_STRING_ESCAPES[ch])
            elif _is_control(ch):
                continue
            else:
                out.append(ch)
        else:
            if ch == '"':
                in_string = True
                out.append(ch)
            elif ch in _STRING_ESCAPES:
                out.append(ch)
            elif _is_control(ch):
                continue
            else:
                out.append(ch)
    return "".join(out)


def extract_json_object(text: str) -> str | None:
    """提取第一个括号平衡的 {...} 片段。

    跳过字符串内的括号。找不到平衡片段时退回到首个 { 到最后一个 } 的贪婪匹配。
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    match = _OBJECT_PATTERN.search(text)
    return match.group(0) if match else None


def robust_json_loads(text: str) -> dict[str, Any]:
    """两级解析 LLM 输出为 dict。

    1. 去代码块 + 清洗后直接 json.loads
    2. 失败则提取第一个 {...} 片段再解析

    两次都失败抛出 JSONRepairError，消息包含底层原因。
    """
    if not text or not text.strip():
        raise JSONRepairError("Empty response, nothing to parse")

    cleaned = clean_json_text(strip_code_fence(text))

    try:
        result = json.loads(cleaned)
    except json.JSONDecodeError as first_err:
        candidate = extract_json_object(cleaned)
        if candidate is None:
            raise JSONRepairError(
                f"Failed to parse LLM response as JSON: {first_err}"
            ) from first_err
        try:
            result = json.loads(candidate)
        except json.JSONDecodeError as second_err:
            raise JSONRepairError(
                f"Failed to parse LLM response as JSON after cleanup attempts: {second_err}"
            ) from second_err

    if not isinstance(result, dict):
        raise JSONRepairError(
            f"Expected a JSON object, got {type(result).__name__}"
        )
    return result
