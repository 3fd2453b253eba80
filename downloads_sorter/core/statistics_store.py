# downloads_sorter/core/statistics_store.py

import json
import logging
import os
import threading
from dataclasses import dataclass
from datetime import date
from pathlib import Path

logger = logging.getLogger(__name__)

STATISTICS_FILE_NAME = "statistics.json"
DATE_FORMAT = "%Y-%m-%d"


@dataclass
class Statistics:
    total_files_processed: int = 0
    files_processed_today: int = 0
    last_processed_date: str = ""

    def to_dict(self) -> dict:
        return {
            "totalFilesProcessed": self.total_files_processed,
            "filesProcessedToday": self.files_processed_today,
            "lastProcessedDate": self.last_processed_date,
        }

    def roll_over(self, today: date | None = None) -> bool:
        """Zeroes the daily counter if it belongs to another day. Returns True if it did."""
        today_str = (today or date.today()).strftime(DATE_FORMAT)
        if self.last_processed_date == today_str:
            return False
        self.files_processed_today = 0
        self.last_processed_date = today_str
        return True


class StatisticsStore:
    """
    Persists the move counters as statistics.json.

    Statistics are best effort: a failed read yields zeroed counters and a
    failed write keeps the in-memory values, both only logged.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> Statistics:
        stats = Statistics()
        try:
            if self.path.exists():
                with open(self.path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                stats.total_files_processed = max(int(data.get("totalFilesProcessed", 0)), 0)
                stats.files_processed_today = max(int(data.get("filesProcessedToday", 0)), 0)
                stats.last_processed_date = str(data.get("lastProcessedDate", ""))
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.error(f"Could not read statistics from '{self.path}': {e}")
            stats = Statistics()

        if stats.roll_over():
            logger.debug("Statistics belong to another day, daily counter reset.")
        return stats

    def save(self, stats: Statistics):
        # Write to a sibling temp file and swap it in, so a crash mid-write
        # never leaves a truncated statistics file behind.
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(temp_path, 'w', encoding='utf-8') as f:
                    json.dump(stats.to_dict(), f, indent=2)
                os.replace(temp_path, self.path)
            except OSError as e:
                logger.error(f"Could not save statistics to '{self.path}': {e}")
