"""E2E 测试专用 fixtures — 注入 mock OpenAI / 索引，使用 TestClient。"""

from __future__ import annotations

import base64
from typing import Callable

import pytest
from starlette.testclient import TestClient

from snapdog.app import create_app


@pytest.fixture
def app(test_config, mock_openai, mock_index):
    return create_app(test_config, openai_client=mock_openai, index=mock_index)


@pytest.fixture
def client(app):
    """进入 lifespan 的 TestClient。"""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def script_openai(mock_openai, chat_response) -> Callable[..., None]:
    """按顺序设置 chat.completions.create 的返回内容。"""

    def _script(*contents: str) -> None:
        mock_openai.chat.completions.create.side_effect = [chat_response(c) for c in contents]

    return _script


@pytest.fixture
def image_base64(jpeg_bytes) -> str:
    return base64.b64encode(jpeg_bytes).decode("ascii")
