# downloads_sorter/core/path_resolver.py

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Mapping

from .config_manager import AppSettings, normalize_extension
from .file_operations import get_unique_path

logger = logging.getLogger(__name__)

DATE_FOLDER_FORMAT = "%Y-%m-%d"


@dataclass(frozen=True)
class FileMetadata:
    size: int
    last_write: datetime
    extension: str

    @classmethod
    def from_path(cls, file_path: Path) -> "FileMetadata":
        stat = file_path.stat()
        return cls(
            size=stat.st_size,
            last_write=datetime.fromtimestamp(stat.st_mtime),
            extension=file_path.suffix,
        )


@dataclass(frozen=True)
class ResolvedDestination:
    directory: Path
    path: Path
    category: str


def resolve_category(extension: str, rules: Mapping[str, str]) -> str | None:
    """
    Looks up the category for an extension.

    Case-insensitive and dot-optional: 'jpg', '.jpg' and '.JPG' all resolve
    to the same rule. `rules` may be a plain mapping of normalized extensions
    or anything with a `get_target_folder` method (a RuleStore).
    """
    get_target_folder = getattr(rules, "get_target_folder", None)
    if get_target_folder is not None:
        return get_target_folder(extension)
    key = normalize_extension(extension)
    return rules.get(key) if key else None


def same_directory(first: Path, second: Path) -> bool:
    """Case-insensitive comparison of two normalized directory paths."""
    def _normalize(path: Path) -> str:
        return os.path.normcase(os.path.normpath(os.path.abspath(path))).casefold()
    return _normalize(first) == _normalize(second)


def destination_directory(source_dir: Path, category: str, metadata: FileMetadata,
                          organize_by_date: bool) -> Path:
    directory = source_dir / category
    if organize_by_date:
        directory = directory / metadata.last_write.strftime(DATE_FOLDER_FORMAT)
    return directory


def resolve(
        file_path: Path,
        metadata: FileMetadata,
        rules: Mapping[str, str],
        settings: AppSettings,
        source_dir: Path,
) -> ResolvedDestination | None:
    """
    Computes where a file should be moved.

    Args:
        file_path: Absolute path of the candidate file.
        metadata: Size, last-write time and extension of the file.
        rules: Extension -> category mapping (or a RuleStore).
        settings: Active settings (min_file_size, organize_by_date).
        source_dir: The watched folder the category folders live under.

    Returns:
        The destination directory, the collision-free final path and the
        category, or None when the file should be left where it is: no rule
        for its extension, smaller than min_file_size, or already sorted.
    """
    category = resolve_category(metadata.extension, rules)
    if not category:
        logger.info(f"No rule for '{file_path.name}', leaving it in place.")
        return None

    if metadata.size < settings.min_file_size:
        return None

    directory = destination_directory(source_dir, category, metadata, settings.organize_by_date)
    if same_directory(file_path.parent, directory):
        logger.debug(f"'{file_path.name}' is already in '{directory}'.")
        return None

    final_path = get_unique_path(directory / file_path.name)
    return ResolvedDestination(directory=directory, path=final_path, category=category)
