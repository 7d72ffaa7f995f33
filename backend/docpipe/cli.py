"""
docpipe command line

  docpipe init-db                          create the documents table
  docpipe ingest report.pdf --title "Q3"   store, record and queue a document

`ingest` runs the IngestionCoordinator in-process and publishes
document.created to the broker; the workers take it from there.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import mimetypes
import sys
from pathlib import Path

from docpipe.core.config import get_settings
from docpipe.core.exceptions import PipelineError

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.DEBUG if get_settings().debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


async def _init_db() -> None:
    from docpipe.db.session import get_engine
    from docpipe.models.documents import Base

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Schema ready | tables=%s", ",".join(sorted(Base.metadata.tables)))


async def _ingest(path: Path, title: str | None, content_type: str | None, language: str | None) -> str:
    from docpipe.workers.dependencies import get_ingestion_coordinator

    doc = await get_ingestion_coordinator().create_document(
        title=title or path.stem,
        filename=path.name,
        content=path.read_bytes(),
        content_type=content_type or mimetypes.guess_type(path.name)[0],
        language=language,
    )
    return str(doc.id)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docpipe", description="Document OCR and summary pipeline.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables")

    ingest = sub.add_parser("ingest", help="Upload a document and start processing")
    ingest.add_argument("path", type=Path, help="PDF or image file")
    ingest.add_argument("--title", default=None, help="Defaults to the file name")
    ingest.add_argument("--content-type", default=None, help="Declared MIME type (sniffed anyway)")
    ingest.add_argument("--language", default=None, help="OCR language hint, e.g. deu")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging()

    if args.command == "init-db":
        asyncio.run(_init_db())
        return 0

    if not args.path.is_file():
        logger.error("File not found | path=%s", args.path)
        return 2
    try:
        document_id = asyncio.run(_ingest(args.path, args.title, args.content_type, args.language))
    except PipelineError as exc:
        logger.error("Ingest failed | path=%s error=%s: %s", args.path, type(exc).__name__, exc)
        return 1

    print(document_id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
