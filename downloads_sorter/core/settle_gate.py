# downloads_sorter/core/settle_gate.py

import logging
import os
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

if os.name == "nt":
    import msvcrt
else:
    import fcntl


class SettleState(Enum):
    """Lifecycle of a single candidate as it waits for its writer to finish."""
    PENDING = auto()
    CHECKING = auto()
    RETRYING = auto()
    SETTLED = auto()
    ABANDONED = auto()


class EventKind(Enum):
    CREATED = auto()
    MODIFIED = auto()
    BACKLOG = auto()


@dataclass(frozen=True)
class SettlePolicy:
    """Delays are in seconds."""
    created_delay: float = 1.0
    modified_delay: float = 0.5
    backlog_delay: float = 0.0
    retry_delay: float = 2.0
    max_retries: int = 3

    def initial_delay(self, kind: EventKind) -> float:
        if kind is EventKind.CREATED:
            return self.created_delay
        if kind is EventKind.MODIFIED:
            return self.modified_delay
        return self.backlog_delay


@dataclass
class Candidate:
    """A path proposed for sorting, together with its settle progress."""
    path: Path
    kind: EventKind
    generation: int = 0
    state: SettleState = SettleState.PENDING
    retries: int = 0
    history: list = field(default_factory=list)

    def transition(self, state: SettleState):
        self.history.append(state)
        self.state = state


def is_safe_to_move(file_path: Path) -> bool:
    """
    Checks whether a file can be taken over right now.

    The file is opened for read-write and an exclusive, non-blocking lock is
    requested on it. A sharing violation, a permission error or a held lock
    all mean another process (a browser download, an antivirus scan) is
    still using the file.
    """
    try:
        with open(file_path, 'r+b') as handle:
            if os.name == "nt":
                try:
                    msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
                    msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
                except OSError:
                    return False
            else:
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                except BlockingIOError:
                    return False
            return True
    except PermissionError:
        return False
    except OSError as e:
        logger.debug(f"Could not open '{file_path.name}' for a settle check: {e}")
        return False


class SettleGate:
    """
    Decides, one attempt at a time, whether a candidate may be moved.

    The gate never sleeps. `check` performs a single probe and advances the
    candidate's state; the caller reschedules RETRYING candidates after
    `policy.retry_delay`.
    """

    def __init__(self, policy: SettlePolicy | None = None,
                 probe: Callable[[Path], bool] = is_safe_to_move):
        self.policy = policy or SettlePolicy()
        self._probe = probe

    def check(self, candidate: Candidate) -> SettleState:
        candidate.transition(SettleState.CHECKING)

        if self._probe(candidate.path):
            candidate.transition(SettleState.SETTLED)
        elif candidate.retries < self.policy.max_retries:
            candidate.retries += 1
            logger.debug(f"'{candidate.path.name}' is still in use, "
                         f"retry {candidate.retries}/{self.policy.max_retries}.")
            candidate.transition(SettleState.RETRYING)
        else:
            candidate.transition(SettleState.ABANDONED)
        return candidate.state
