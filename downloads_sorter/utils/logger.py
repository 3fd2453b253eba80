# downloads_sorter/utils/logger.py

import logging
import logging.handlers
from pathlib import Path

LOG_FILE_NAME = 'downloads_sorter.log'


class LoggerManager:
    """
    Configures the application-wide logging system.

    Two handlers are attached to the root logger:
    1. Console Handler: INFO and above, short timestamps, for the person
       watching the terminal.
    2. Rotating File Handler: DEBUG and above, with module and line details,
       rotated at 5 MB so a long-running watcher never fills the disk.
    """

    def __init__(self, log_dir: Path, log_file_name: str = LOG_FILE_NAME, log_level=logging.DEBUG):
        """
        Args:
            log_dir: Directory that receives the log file. Created if missing.
            log_file_name: Name of the log file inside log_dir.
            log_level: The base logging level to capture (e.g., DEBUG, INFO).
        """
        self.log_file_path = Path(log_dir) / log_file_name
        self.log_level = log_level
        self.root_logger = logging.getLogger()

    def setup(self, verbose: bool = False):
        """Attaches the console and file handlers to the root logger."""
        # Handlers are only added once per process.
        if self.root_logger.hasHandlers():
            return

        self.root_logger.setLevel(self.log_level)
        self.root_logger.addHandler(self._create_console_handler(verbose))

        try:
            self.log_file_path.parent.mkdir(parents=True, exist_ok=True)
            self.root_logger.addHandler(self._create_file_handler())
        except OSError as e:
            # A read-only home directory should not stop the sorter from running.
            logging.warning(f"File logging disabled, cannot write to '{self.log_file_path}': {e}")

        logging.debug(f"Logging configured. Log file: {self.log_file_path}")

    def _create_console_handler(self, verbose: bool) -> logging.StreamHandler:
        handler = logging.StreamHandler()
        handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        formatter = logging.Formatter(
            '%(asctime)s - [%(levelname)s] - %(message)s',
            datefmt='%H:%M:%S'
        )
        handler.setFormatter(formatter)
        return handler

    def _create_file_handler(self) -> logging.handlers.RotatingFileHandler:
        handler = logging.handlers.RotatingFileHandler(
            self.log_file_path, maxBytes=5*1024*1024, backupCount=5, encoding='utf-8'
        )
        handler.setLevel(logging.DEBUG)
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - [%(levelname)s] - %(filename)s:%(lineno)d - %(message)s'
        )
        handler.setFormatter(formatter)
        return handler


def setup_logging(log_dir: Path, verbose: bool = False):
    """Initializes and configures the application-wide logging system."""
    manager = LoggerManager(log_dir)
    manager.setup(verbose)
