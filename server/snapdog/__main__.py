"""python -m snapdog — 启动 HTTP 服务。"""

from __future__ import annotations

import uvicorn

from snapdog.app import create_app
from snapdog.config import load_settings


def main() -> None:
    settings = load_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level.lower(),
    )


if __name__ == "__main__":
    main()
