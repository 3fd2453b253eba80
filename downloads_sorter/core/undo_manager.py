# downloads_sorter/core/undo_manager.py

import logging
import threading
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)


class UndoStatus(Enum):
    NOTHING_TO_UNDO = auto()
    RESTORED = auto()
    FILE_MISSING = auto()
    ERROR = auto()


@dataclass(frozen=True)
class MoveRecord:
    current_path: Path
    original_path: Path


class UndoStack:
    """
    In-memory, most-recent-first history of moves made during this session.

    Every operation takes the stack's lock, so concurrent sort pipelines can
    push while an undo pops without tearing a record.
    """

    def __init__(self):
        self._records: List[MoveRecord] = []
        self._lock = threading.Lock()

    def push(self, record: MoveRecord):
        with self._lock:
            self._records.append(record)
        logger.debug(f"Recorded move '{record.original_path}' -> '{record.current_path}'")

    def pop(self) -> MoveRecord | None:
        with self._lock:
            if not self._records:
                return None
            return self._records.pop()

    @property
    def can_undo(self) -> bool:
        with self._lock:
            return bool(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
