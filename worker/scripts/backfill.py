"""
CLI: backfills origen -> destino.

Uso:
  python scripts/backfill.py cohorts
  python scripts/backfill.py attendance registration cohort-members
  python scripts/backfill.py projects project-tasks project-tracking \
      --solutions exports/solutions.json --projects exports/projects.json
  python scripts/backfill.py fix-cohort-types

Variables de entorno:
  - DATABASE_URL (destino)
  - SOURCE_DATABASE_URL (origen relacional; no la usan los backfills de proyectos)

El código de salida es 1 si algún backfill terminó con errores.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

# Permite ejecutar el script desde cualquier cwd sin instalar el paquete.
_WORKER_ROOT = Path(__file__).resolve().parents[1]
if str(_WORKER_ROOT) not in sys.path:
    sys.path.insert(0, str(_WORKER_ROOT))

load_dotenv(_WORKER_ROOT / ".env", override=False)
load_dotenv(_WORKER_ROOT.parent / ".env", override=False)

from datasync.application.backfill.documents import (
    ProjectBackfill,
    ProjectTaskBackfill,
    ProjectTrackingBackfill,
)
from datasync.application.backfill.relational import (
    AttendanceBackfill,
    CohortBackfill,
    CohortMemberBackfill,
    RegistrationBackfill,
)
from datasync.application.use_cases.event_processor import repropagate_child_types
from datasync.core.config import Settings
from datasync.core.events import shutdown, startup
from datasync.core.logging import configure_logging
from datasync.infrastructure.source.document_export import DocumentExport

RELATIONAL = {
    "cohorts": CohortBackfill,
    "attendance": AttendanceBackfill,
    "registration": RegistrationBackfill,
    "cohort-members": CohortMemberBackfill,
}
DOCUMENTS = {
    "projects": ProjectBackfill,
    "project-tasks": ProjectTaskBackfill,
    "project-tracking": ProjectTrackingBackfill,
}
FIX_COHORT_TYPES = "fix-cohort-types"


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill de datos origen -> destino")
    parser.add_argument(
        "jobs",
        nargs="+",
        choices=[*RELATIONAL, *DOCUMENTS, FIX_COHORT_TYPES],
        help="Backfills a ejecutar, en el orden indicado",
    )
    parser.add_argument("--solutions", type=Path, help="Export de la colección solutions")
    parser.add_argument("--projects", type=Path, help="Export de la colección projects")
    parser.add_argument("--progress-every", type=int, default=None, help="Frecuencia del log de progreso")
    args = parser.parse_args(argv)

    needs_solutions = {"projects", "project-tasks"} & set(args.jobs)
    if needs_solutions and not args.solutions:
        parser.error(f"--solutions es obligatorio para: {', '.join(sorted(needs_solutions))}")
    if {"project-tasks", "project-tracking"} & set(args.jobs) and not args.projects:
        parser.error("--projects es obligatorio para project-tasks y project-tracking")
    return args


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    with_source = any(job in RELATIONAL for job in args.jobs)
    context = await startup(settings, with_source=with_source)
    failed = False
    try:
        export = DocumentExport(args.solutions, args.projects) if args.solutions or args.projects else None
        for job in args.jobs:
            if job == FIX_COHORT_TYPES:
                await repropagate_child_types(context.reconciler)
                continue
            if job in RELATIONAL:
                runner = RELATIONAL[job](
                    context.reconciler,
                    context.transformer,
                    context.source_repository,
                    progress_every=args.progress_every,
                )
            else:
                runner = DOCUMENTS[job](
                    context.reconciler,
                    context.transformer,
                    export,
                    progress_every=args.progress_every,
                )
            summary = await runner.run()
            failed = failed or summary.has_errors
    finally:
        await shutdown(context)
    return 1 if failed else 0


def main(argv=None) -> int:
    args = _parse_args(argv)
    settings = Settings()
    configure_logging(settings)
    try:
        return asyncio.run(_run(args, settings))
    except KeyboardInterrupt:
        logger.warning("Backfill interrumpido")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
