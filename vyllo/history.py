"""
history.py: Append-only design history.

JsonlHistoryStore keeps one Design per line (image base64-encoded), so an
append never rewrites earlier records. Presentation order (newest first) is
left to the caller; load_all returns insertion order.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Protocol, Union, runtime_checkable

from pydantic import ValidationError

from .types import Design

logger = logging.getLogger(__name__)


@runtime_checkable
class HistoryStore(Protocol):
    def append(self, design: Design) -> None: ...

    def load_all(self) -> List[Design]: ...


class InMemoryHistoryStore:
    def __init__(self) -> None:
        self._designs: List[Design] = []

    def append(self, design: Design) -> None:
        self._designs.append(design)

    def load_all(self) -> List[Design]:
        return list(self._designs)


class JsonlHistoryStore:
    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def append(self, design: Design) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(design.model_dump_json() + "\n")
        logger.debug("History: appended %s (%s) to %s", design.id, design.kind.value, self.path)

    def load_all(self) -> List[Design]:
        if not self.path.exists():
            return []
        designs: List[Design] = []
        with self.path.open(encoding="utf-8") as fh:
            for line_no, line in enumerate(fh, 1):
                if not line.strip():
                    continue
                try:
                    designs.append(Design.model_validate_json(line))
                except ValidationError as exc:
                    raise ValueError(f"{self.path}:{line_no}: corrupt history record") from exc
        return designs
