"""
CLI: re-procesa eventos guardados en un archivo JSON lines.

Cada línea es {"topic": "...", "message": {...}}; `message` es el payload
tal como llega del broker (envuelto {eventType, data} o mensaje directo).

Uso:
  python scripts/replay_events.py eventos.jsonl
  python scripts/replay_events.py eventos.jsonl --topic user-topic
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

from dotenv import load_dotenv
from loguru import logger

_WORKER_ROOT = Path(__file__).resolve().parents[1]
if str(_WORKER_ROOT) not in sys.path:
    sys.path.insert(0, str(_WORKER_ROOT))

load_dotenv(_WORKER_ROOT / ".env", override=False)
load_dotenv(_WORKER_ROOT.parent / ".env", override=False)

from datasync.application.use_cases.event_processor import consume
from datasync.core.config import Settings
from datasync.core.events import shutdown, startup
from datasync.core.logging import configure_logging


def iter_events(path: Path, topic_filter: Optional[str] = None) -> Iterator[Tuple[str, Dict[str, Any]]]:
    """Itera (topic, mensaje); líneas inválidas se omiten con warning."""
    with path.open("r", encoding="utf-8") as fh:
        for line_number, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except ValueError as e:
                logger.warning(f"{path.name}:{line_number}: JSON inválido ({e})")
                continue
            topic = record.get("topic") if isinstance(record, dict) else None
            message = record.get("message") if isinstance(record, dict) else None
            if not topic or not isinstance(message, dict):
                logger.warning(f"{path.name}:{line_number}: se esperaba {{topic, message}}")
                continue
            if topic_filter and topic != topic_filter:
                continue
            yield topic, message


async def _run(path: Path, topic_filter: Optional[str], settings: Settings) -> int:
    context = await startup(settings)
    try:
        summary = await consume(context.processor, iter_events(path, topic_filter))
    finally:
        await shutdown(context)
    return 1 if summary.has_errors else 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Re-procesa eventos desde un archivo JSON lines")
    parser.add_argument("path", type=Path, help="Archivo con un {topic, message} por línea")
    parser.add_argument("--topic", default=None, help="Procesar solo este topic")
    args = parser.parse_args(argv)

    if not args.path.exists():
        parser.error(f"No existe el archivo: {args.path}")

    settings = Settings()
    configure_logging(settings)
    return asyncio.run(_run(args.path, args.topic, settings))


if __name__ == "__main__":
    raise SystemExit(main())
