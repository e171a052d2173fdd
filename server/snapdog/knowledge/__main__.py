"""命令行入口：python -m snapdog.knowledge <articles-dir>"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from snapdog.config import load_settings
from snapdog.knowledge.ingest import KnowledgeIngester
from snapdog.pipeline.llm import LLMClient
from snapdog.vectorstore import PineconeIndex

logger = logging.getLogger("snapdog.knowledge")


async def _run(directory: Path, config_path: Path | None) -> int:
    settings = load_settings(config_path) if config_path else load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.server.log_level),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    llm = LLMClient(settings.openai)
    index = PineconeIndex(settings.pinecone)
    await llm.start()
    await index.start()
    try:
        await KnowledgeIngester(settings.ingest, llm, index).ingest(directory)
    except Exception:
        logger.exception("Ingestion failed")
        return 1
    finally:
        await index.close()
        await llm.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Ingest dog behavior articles into the vector index")
    parser.add_argument("directory", type=Path, help="directory containing *.json articles")
    parser.add_argument("--config", type=Path, default=None, help="TOML config file")
    args = parser.parse_args(argv)

    if not args.directory.is_dir():
        parser.error(f"not a directory: {args.directory}")
    return asyncio.run(_run(args.directory, args.config))


if __name__ == "__main__":
    sys.exit(main())
