# downloads_sorter/core/sort_engine.py

import logging
import os
import threading
import time
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Tuple

from PySide6.QtCore import QObject, Signal, Slot

from . import path_resolver
from .config_manager import RuleStore
from .file_operations import move_file
from .path_resolver import FileMetadata
from .settle_gate import Candidate, EventKind, SettleGate, SettleState
from .statistics_store import Statistics, StatisticsStore
from .undo_manager import MoveRecord, UndoStack, UndoStatus
from .watcher import FolderWatcher, SortEventHandler
from downloads_sorter.utils.thread_manager import DelayedTaskScheduler

logger = logging.getLogger(__name__)

# Pause between backlog files so a folder with thousands of files does not
# flood the disk at start-up.
BACKLOG_THROTTLE_SECONDS = 0.05

# A file restored by undo is ignored by the watcher for this long, otherwise
# the restore itself would be picked up as a new download and sorted again.
UNDO_GRACE_SECONDS = 5.0


def _path_key(path: Path) -> str:
    return os.path.normcase(os.path.abspath(path))


class SortEngine(QObject):
    """
    Watches a folder and moves settled files into their category folders.

    States: stopped -> running -> (paused <-> running) -> stopped.

    Filesystem events and the start-up backlog scan both become Candidates.
    Each candidate waits out its initial delay on the scheduler, then goes
    through the SettleGate one probe at a time until it is settled or
    abandoned, and is finally resolved and moved. Candidates never block a
    worker while waiting.

    The undo stack, the counters, the pause flag and the set of in-flight
    paths are shared by every pipeline and only touched under `self._lock`.

    Signals:
        log_message(str): timestamped, human-readable log line.
        files_processed_changed(int): new value of the daily counter.
        file_moved(str, str): file name and category, only when notifications are enabled.
        undo_availability_changed(bool): whether another undo step is available.
        state_changed(bool, bool): is_running, is_paused.
    """

    log_message = Signal(str)
    files_processed_changed = Signal(int)
    file_moved = Signal(str, str)
    undo_availability_changed = Signal(bool)
    state_changed = Signal(bool, bool)

    def __init__(
            self,
            rule_store: RuleStore,
            statistics_store: StatisticsStore,
            settle_gate: SettleGate | None = None,
            scheduler: DelayedTaskScheduler | None = None,
            backlog_throttle: float = BACKLOG_THROTTLE_SECONDS,
    ):
        super().__init__()
        self._rule_store = rule_store
        self._statistics_store = statistics_store
        self._settle_gate = settle_gate or SettleGate()
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or DelayedTaskScheduler()
        self._backlog_throttle = backlog_throttle

        self._undo_stack = UndoStack()
        self._lock = threading.RLock()
        # Serializes start/stop so the watcher is never created and torn down concurrently.
        self._lifecycle_lock = threading.Lock()

        self._is_running = False
        self._is_paused = False
        self._generation = 0
        self._backlog_cancel = threading.Event()
        self._in_flight: Dict[str, Candidate] = {}
        self._recently_restored: Dict[str, float] = {}
        self._watcher: FolderWatcher | None = None

        self._source_dir = rule_store.settings.resolve_source_path()
        self._stats = statistics_store.load()

    # --- Read-only state ---

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def is_paused(self) -> bool:
        return self._is_paused

    @property
    def is_watching(self) -> bool:
        """False while stopped, and while running inert without a watched folder."""
        return self._watcher is not None

    @property
    def can_undo(self) -> bool:
        return self._undo_stack.can_undo

    @property
    def undo_depth(self) -> int:
        return len(self._undo_stack)

    @property
    def source_dir(self) -> Path:
        return self._source_dir

    @property
    def files_processed_today(self) -> int:
        with self._lock:
            return self._stats.files_processed_today

    @property
    def total_files_processed(self) -> int:
        with self._lock:
            return self._stats.total_files_processed

    @property
    def statistics(self) -> Statistics:
        with self._lock:
            return replace(self._stats)

    # --- Lifecycle ---

    @Slot()
    def start(self):
        with self._lifecycle_lock:
            with self._lock:
                if self._is_running:
                    return
                self._is_running = True
                self._is_paused = False
                self._generation += 1
                generation = self._generation
                self._backlog_cancel = threading.Event()
                cancel = self._backlog_cancel

            source_dir = self._source_dir
            error = None
            if not source_dir.is_dir():
                error = f"Folder to sort was not found: {source_dir}"
            else:
                try:
                    handler = SortEventHandler(source_dir, self._on_file_event, self._on_watch_lost)
                    watcher = FolderWatcher(source_dir, handler)
                    watcher.start()
                except OSError as e:
                    error = f"Could not watch '{source_dir}': {e}"
                else:
                    with self._lock:
                        self._watcher = watcher

        # Signals are emitted outside the lifecycle lock so receivers may call back into the engine.
        self.state_changed.emit(True, False)
        if error:
            # Running but inert until the settings are fixed and the engine restarted.
            self._log(error, logging.ERROR)
            return

        self._log(f"Sorting started. Watching: {source_dir}")
        self._scheduler.submit(self._scan_backlog, generation, cancel)

    @Slot()
    def stop(self):
        with self._lifecycle_lock:
            with self._lock:
                if not self._is_running:
                    return
                self._is_running = False
                self._is_paused = False
                # Outstanding candidates carry the old generation and drop themselves.
                self._generation += 1
                self._backlog_cancel.set()
                self._in_flight.clear()
                watcher, self._watcher = self._watcher, None

            if watcher is not None:
                watcher.stop()

        self._save_statistics()
        self.state_changed.emit(False, False)
        self._log("Sorting stopped.")

    @Slot()
    def pause(self):
        with self._lock:
            if not self._is_running or self._is_paused:
                return
            self._is_paused = True
        self.state_changed.emit(True, True)
        self._log("Sorting paused.")

    @Slot()
    def resume(self):
        with self._lock:
            if not self._is_running or not self._is_paused:
                return
            self._is_paused = False
        self.state_changed.emit(True, False)
        self._log("Sorting resumed.")

    @Slot()
    def update_settings(self):
        """Restarts against the current settings, keeping the running and paused intent."""
        with self._lock:
            was_running = self._is_running
            was_paused = self._is_paused

        self.stop()
        self._source_dir = self._rule_store.settings.resolve_source_path()
        if was_running:
            self.start()
            if was_paused:
                self.pause()

    def close(self):
        """Stops sorting and releases the worker pool. The engine cannot be restarted afterwards."""
        self.stop()
        if self._owns_scheduler:
            self._scheduler.shutdown()

    # --- Undo ---

    @Slot()
    def undo_last(self) -> Tuple[UndoStatus, Path | None]:
        """
        Moves the most recently sorted file back to where it came from.

        Returns:
            A tuple of the outcome and, when restored, the path the file now has.
            If the original location is taken the file gets a ' (n)' suffix there.
        """
        with self._lock:
            record = self._undo_stack.pop()
            can_undo = self._undo_stack.can_undo
        if record is None:
            return UndoStatus.NOTHING_TO_UNDO, None

        self.undo_availability_changed.emit(can_undo)

        if not record.current_path.exists():
            self._log(f"Cannot undo: '{record.current_path.name}' is no longer at "
                      f"'{record.current_path.parent}'.", logging.WARNING)
            return UndoStatus.FILE_MISSING, None

        try:
            restored_path = move_file(record.current_path, record.original_path)
        except OSError as e:
            self._log(f"Error while undoing '{record.current_path.name}': {e}", logging.ERROR, exc_info=True)
            return UndoStatus.ERROR, None

        now = time.monotonic()
        with self._lock:
            self._recently_restored = {
                key: until for key, until in self._recently_restored.items() if until > now
            }
            self._recently_restored[_path_key(restored_path)] = now + UNDO_GRACE_SECONDS
            if self._stats.files_processed_today > 0:
                self._stats.files_processed_today -= 1
            snapshot = replace(self._stats)

        self._statistics_store.save(snapshot)
        self.files_processed_changed.emit(snapshot.files_processed_today)
        self._log(f"Undone: '{record.current_path.name}' -> '{restored_path.name}'")
        return UndoStatus.RESTORED, restored_path

    # --- One-shot sorting ---

    def list_backlog(self) -> List[Path]:
        """Regular files currently sitting directly in the source folder."""
        try:
            return sorted(p for p in self._source_dir.iterdir() if p.is_file())
        except OSError as e:
            self._log(f"Error while scanning '{self._source_dir}': {e}", logging.ERROR)
            return []

    def sort_now(self, file_path: Path) -> Path | None:
        """
        Runs one file through the pipeline immediately, outside the watch loop.

        The file gets a single settle probe and no retries.

        Returns:
            The new path of the file, or None if it was left in place.
        """
        candidate = Candidate(Path(file_path), EventKind.BACKLOG)
        try:
            if not candidate.path.is_file():
                return None
            if self._settle_gate.check(candidate) is not SettleState.SETTLED:
                self._log(f"Skipped '{candidate.path.name}': file is in use by another process.", logging.WARNING)
                return None
            return self._sort_file(candidate.path)
        except Exception as e:
            self._log(f"Error while processing '{candidate.path.name}': {e}", logging.ERROR, exc_info=True)
            return None

    def sort_existing(self) -> int:
        """Sorts the whole backlog once. Returns the number of files moved."""
        return sum(1 for path in self.list_backlog() if self.sort_now(path) is not None)

    # --- Candidate pipeline ---

    def _on_file_event(self, path: Path, kind: EventKind):
        # Runs on the watchdog thread; only queue, never touch the disk here.
        with self._lock:
            generation = self._generation
        self._enqueue(path, kind, generation)

    def _enqueue(self, path: Path, kind: EventKind, generation: int):
        key = _path_key(path)
        with self._lock:
            if not self._is_running or self._is_paused or generation != self._generation:
                return
            if key in self._in_flight:
                # Duplicate notification for a file that is already being handled.
                return
            candidate = Candidate(path, kind, generation)
            self._in_flight[key] = candidate

        delay = self._settle_gate.policy.initial_delay(kind)
        if not self._scheduler.schedule(delay, self._advance, candidate):
            self._release(candidate)

    def _accepts(self, candidate: Candidate) -> bool:
        with self._lock:
            return (self._is_running and not self._is_paused
                    and candidate.generation == self._generation)

    def _is_recently_restored(self, path: Path) -> bool:
        key = _path_key(path)
        with self._lock:
            until = self._recently_restored.get(key)
            if until is None:
                return False
            if time.monotonic() < until:
                return True
            del self._recently_restored[key]
            return False

    def _release(self, candidate: Candidate):
        key = _path_key(candidate.path)
        with self._lock:
            if self._in_flight.get(key) is candidate:
                del self._in_flight[key]

    def _advance(self, candidate: Candidate):
        """One step of a candidate: settle probe, then either reschedule, give up or sort."""
        rescheduled = False
        try:
            if not self._accepts(candidate):
                return
            if not candidate.path.is_file():
                if not self._source_dir.is_dir():
                    self._on_watch_lost()
                return
            if self._is_recently_restored(candidate.path):
                logger.debug(f"Ignoring '{candidate.path.name}', it was just restored by undo.")
                return

            state = self._settle_gate.check(candidate)
            if state is SettleState.RETRYING:
                rescheduled = self._scheduler.schedule(
                    self._settle_gate.policy.retry_delay, self._advance, candidate)
            elif state is SettleState.ABANDONED:
                self._log(f"Could not process '{candidate.path.name}': file is in use by another process.",
                          logging.WARNING)
            elif self._accepts(candidate):
                self._sort_file(candidate.path)
        except Exception as e:
            self._log(f"Error while processing '{candidate.path.name}': {e}", logging.ERROR, exc_info=True)
        finally:
            if not rescheduled:
                self._release(candidate)

    def _sort_file(self, file_path: Path) -> Path | None:
        settings = self._rule_store.settings
        metadata = FileMetadata.from_path(file_path)
        destination = path_resolver.resolve(file_path, metadata, self._rule_store, settings, self._source_dir)
        if destination is None:
            return None

        try:
            # Suffixing restarts from the plain name so a lost race yields the next free ' (n)'.
            final_path = move_file(file_path, destination.directory / file_path.name)
        except FileNotFoundError:
            if file_path.exists():
                raise
            logger.debug(f"'{file_path.name}' disappeared before it could be moved.")
            return None

        self._record_move(MoveRecord(current_path=final_path, original_path=file_path))

        if settings.notifications_enabled:
            self.file_moved.emit(file_path.name, destination.category)

        if final_path.name != file_path.name:
            self._log(f"File '{file_path.name}' moved to {destination.category} as '{final_path.name}'")
        else:
            self._log(f"File '{file_path.name}' moved to {destination.category}")
        return final_path

    def _record_move(self, record: MoveRecord):
        with self._lock:
            self._undo_stack.push(record)
            self._stats.roll_over()
            self._stats.files_processed_today += 1
            self._stats.total_files_processed += 1
            snapshot = replace(self._stats)

        self._statistics_store.save(snapshot)
        self.files_processed_changed.emit(snapshot.files_processed_today)
        self.undo_availability_changed.emit(True)

    def _scan_backlog(self, generation: int, cancel: threading.Event):
        files = self.list_backlog()
        if files:
            self._log(f"Found {len(files)} files to process.")
        for path in files:
            if cancel.is_set():
                break
            self._enqueue(path, EventKind.BACKLOG, generation)
            cancel.wait(self._backlog_throttle)

    # --- Watch loss ---

    def _on_watch_lost(self):
        # May run on a watchdog thread, which cannot join its own observer.
        with self._lock:
            generation = self._generation
        self._scheduler.submit(self._handle_watch_lost, generation)

    def _handle_watch_lost(self, generation: int):
        with self._lifecycle_lock:
            with self._lock:
                if not self._is_running or generation != self._generation or self._watcher is None:
                    return
                watcher, self._watcher = self._watcher, None
            watcher.stop()
        self._log(f"Folder '{self._source_dir}' is no longer available. "
                  f"Sorting is inactive until the settings are updated.", logging.ERROR)

    # --- Helpers ---

    def _save_statistics(self):
        with self._lock:
            snapshot = replace(self._stats)
        self._statistics_store.save(snapshot)

    def _log(self, message: str, level: int = logging.INFO, exc_info: bool = False):
        logger.log(level, message, exc_info=exc_info)
        timestamp = datetime.now().strftime("%H:%M:%S")
        self.log_message.emit(f"[{timestamp}] {message}")
