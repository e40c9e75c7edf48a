"""
Lectura de exports del store de documentos (colecciones solutions y projects).

Se aceptan dos formatos de `mongoexport`:
- JSON lines (un documento por línea, formato por defecto)
- arreglo JSON (`--jsonArray`)

Los valores extendidos ({"$oid": ...}, {"$date": ...}) se dejan tal cual;
la coerción de fechas y la extracción de ids los entienden.
"""
import json
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from loguru import logger

from datasync.application.services.coercion import object_id


def read_documents(path: Union[str, Path]) -> Iterator[Dict[str, Any]]:
    """
    Itera los documentos de un archivo exportado.

    Líneas vacías o que no son objetos JSON se omiten con warning.
    """
    path = Path(path)
    with path.open("r", encoding="utf-8") as fh:
        head = fh.read(1)
        while head and head.isspace():
            head = fh.read(1)
        fh.seek(0)

        if head == "[":
            documents = json.load(fh)
            for index, doc in enumerate(documents):
                if isinstance(doc, dict):
                    yield doc
                else:
                    logger.warning(f"{path.name}[{index}]: elemento no es un documento, se omite")
            return

        for line_number, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                doc = json.loads(line)
            except ValueError as e:
                logger.warning(f"{path.name}:{line_number}: JSON inválido, se omite ({e})")
                continue
            if isinstance(doc, dict):
                yield doc
            else:
                logger.warning(f"{path.name}:{line_number}: línea no es un documento, se omite")


class DocumentExport:
    """
    Acceso a las colecciones exportadas.

    Args:
        solutions_path: export de la colección solutions (opcional)
        projects_path: export de la colección projects (opcional)
    """

    def __init__(
        self,
        solutions_path: Optional[Union[str, Path]] = None,
        projects_path: Optional[Union[str, Path]] = None,
    ):
        self.solutions_path = Path(solutions_path) if solutions_path else None
        self.projects_path = Path(projects_path) if projects_path else None
        self._projects_by_solution: Optional[Dict[str, Dict[str, Any]]] = None

    def solutions(self) -> List[Dict[str, Any]]:
        if self.solutions_path is None:
            return []
        docs = list(read_documents(self.solutions_path))
        logger.info(f"Export {self.solutions_path.name}: {len(docs)} solutions")
        return docs

    def projects(self) -> List[Dict[str, Any]]:
        if self.projects_path is None:
            return []
        docs = list(read_documents(self.projects_path))
        logger.info(f"Export {self.projects_path.name}: {len(docs)} projects")
        return docs

    def project_for_solution(self, solution_id: str) -> Optional[Dict[str, Any]]:
        """Primer documento de projects con ese solutionId, o None."""
        if self._projects_by_solution is None:
            index: Dict[str, Dict[str, Any]] = {}
            for doc in self.projects():
                key = object_id(doc.get("solutionId"))
                if key and key not in index:
                    index[key] = doc
            self._projects_by_solution = index
        return self._projects_by_solution.get(solution_id)
