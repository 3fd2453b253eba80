# downloads_sorter/core/config_manager.py

import json
import logging
import os
import shutil
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Dict, Any

logger = logging.getLogger(__name__)

RULES_FILE_NAME = "rules.json"
SETTINGS_FILE_NAME = "settings.json"
CONFIG_DIR_ENV_VAR = "DOWNLOADS_SORTER_HOME"

DEFAULT_RULES: Dict[str, str] = {
    # Images
    ".jpg": "Images", ".jpeg": "Images", ".png": "Images", ".gif": "Images",
    ".bmp": "Images", ".webp": "Images", ".svg": "Images", ".ico": "Images",
    # Documents
    ".doc": "Documents", ".docx": "Documents", ".pdf": "Documents", ".txt": "Documents",
    ".rtf": "Documents", ".xls": "Documents", ".xlsx": "Documents", ".ppt": "Documents",
    ".pptx": "Documents",
    # Installers
    ".exe": "Installers", ".msi": "Installers", ".msix": "Installers",
    # Archives
    ".zip": "Archives", ".rar": "Archives", ".7z": "Archives", ".tar": "Archives", ".gz": "Archives",
    # Audio
    ".mp3": "Audio", ".wav": "Audio", ".flac": "Audio", ".ogg": "Audio", ".aac": "Audio",
    ".wma": "Audio", ".m4a": "Audio",
}


def default_config_dir() -> Path:
    """Returns the directory holding rules, settings, statistics and logs."""
    override = os.environ.get(CONFIG_DIR_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".downloads_sorter"


def default_downloads_dir() -> Path:
    return Path.home() / "Downloads"


def normalize_extension(extension: str) -> str:
    """Lower-cases an extension and makes sure it starts with a dot. '' stays ''."""
    extension = (extension or "").strip().lower()
    if extension and not extension.startswith("."):
        extension = "." + extension
    return extension


@dataclass
class AppSettings:
    """User-editable settings, persisted as settings.json."""
    source_path: str | None = None
    min_file_size: int = 0
    organize_by_date: bool = False
    notifications_enabled: bool = True
    autostart_enabled: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppSettings":
        # Unknown keys from newer or hand-edited files are ignored.
        known = {f.name for f in fields(cls)}
        settings = cls(**{k: v for k, v in data.items() if k in known})
        try:
            settings.min_file_size = max(int(settings.min_file_size), 0)
        except (TypeError, ValueError):
            logger.warning(f"Invalid min_file_size {settings.min_file_size!r} in settings, using 0.")
            settings.min_file_size = 0
        if settings.source_path is not None and not isinstance(settings.source_path, str):
            logger.warning(f"Invalid source_path {settings.source_path!r} in settings, using the default folder.")
            settings.source_path = None
        for f in fields(cls):
            value = getattr(settings, f.name)
            if f.type is bool and not isinstance(value, bool):
                logger.warning(f"Invalid {f.name} {value!r} in settings, using {f.default}.")
                setattr(settings, f.name, f.default)
        return settings

    def resolve_source_path(self) -> Path:
        """The configured source folder, or the user's Downloads folder if unset or missing."""
        if self.source_path:
            candidate = Path(self.source_path).expanduser()
            if candidate.is_dir():
                return candidate
            logger.warning(f"Configured source folder '{candidate}' does not exist, "
                           f"falling back to '{default_downloads_dir()}'.")
        return default_downloads_dir()


class RuleStore:
    """
    Holds the extension -> category rules and the application settings.

    Both live in human-editable JSON files inside `config_dir`. Read failures
    fall back to defaults, write failures are logged; neither is ever raised
    to the caller.
    """

    def __init__(self, config_dir: Path | None = None):
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self.rules_path = self.config_dir / RULES_FILE_NAME
        self.settings_path = self.config_dir / SETTINGS_FILE_NAME
        self._rules: Dict[str, str] = {}
        self._settings = AppSettings()
        self.load_rules()
        self.load_settings()

    @property
    def rules(self) -> Dict[str, str]:
        return dict(self._rules)

    @property
    def settings(self) -> AppSettings:
        return self._settings

    def get_target_folder(self, extension: str) -> str | None:
        """Returns the category for an extension ('jpg', '.JPG', ...) or None if there is no rule."""
        key = normalize_extension(extension)
        if not key:
            return None
        return self._rules.get(key)

    # --- Rules ---

    def load_rules(self):
        """Loads rules.json, creating it with the default rule set when it does not exist."""
        if not self.rules_path.exists():
            logger.info(f"No rules file at '{self.rules_path}', creating it with the default rules.")
            self._rules = dict(DEFAULT_RULES)
            self.save_rules()
            return

        try:
            with open(self.rules_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("rules file must contain a JSON object")
            self._rules = {
                normalize_extension(ext): str(category)
                for ext, category in data.items()
                if normalize_extension(ext) and category
            }
            logger.info(f"Loaded {len(self._rules)} rules from '{self.rules_path}'.")
        except (OSError, ValueError) as e:
            # json.JSONDecodeError is a ValueError.
            logger.error(f"Failed to load rules from '{self.rules_path}': {e}. Using the default rules.")
            self._rules = dict(DEFAULT_RULES)

    def save_rules(self) -> bool:
        return self._write_json(self.rules_path, dict(sorted(self._rules.items())))

    def add_rule(self, extension: str, category: str) -> bool:
        """Adds or replaces the rule for an extension and persists the rule set."""
        key = normalize_extension(extension)
        category = (category or "").strip()
        if not key or not category:
            logger.error(f"Refusing to add an incomplete rule: {extension!r} -> {category!r}")
            return False

        previous = self._rules.get(key)
        if previous and previous != category:
            logger.warning(f"Rule for '{key}' changes from '{previous}' to '{category}'.")
        self._rules[key] = category
        return self.save_rules()

    def remove_rule(self, extension: str) -> bool:
        key = normalize_extension(extension)
        if key not in self._rules:
            logger.info(f"No rule for '{key}' to remove.")
            return False
        del self._rules[key]
        return self.save_rules()

    # --- Settings ---

    def load_settings(self):
        """Loads settings.json, writing the defaults if it does not exist yet."""
        if not self.settings_path.exists():
            self._settings = AppSettings()
            self.save_settings()
            return

        try:
            with open(self.settings_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("settings file must contain a JSON object")
            self._settings = AppSettings.from_dict(data)
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Failed to load settings from '{self.settings_path}': {e}. Using defaults.")
            self._settings = AppSettings()

    def save_settings(self) -> bool:
        return self._write_json(self.settings_path, asdict(self._settings))

    def update_settings(self, **changes) -> bool:
        """Applies keyword changes to the settings and persists them."""
        merged = asdict(self._settings)
        for key, value in changes.items():
            if key not in merged:
                raise KeyError(f"Unknown setting: {key}")
            merged[key] = value
        self._settings = AppSettings.from_dict(merged)
        return self.save_settings()

    # --- Persistence ---

    def _write_json(self, path: Path, data: Dict[str, Any]) -> bool:
        """
        Writes `data` to `path`, keeping a .bak copy of the previous file.

        If the write fails the backup is copied back so the file on disk is
        never left half-written.
        """
        backup_path = path.with_suffix(path.suffix + ".bak")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if path.exists():
                shutil.copy(path, backup_path)

            with open(path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            return True

        except OSError as e:
            logger.error(f"Failed to write '{path}': {e}", exc_info=True)
            if backup_path.exists():
                try:
                    shutil.copy(backup_path, path)
                    logger.warning(f"Restored '{path.name}' from backup after a failed save.")
                except OSError as restore_error:
                    logger.error(f"Could not restore '{path.name}' from backup: {restore_error}")
            return False
