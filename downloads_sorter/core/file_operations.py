# downloads_sorter/core/file_operations.py

import errno
import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

# How many suffixed names a single move will try before giving up. Only reached
# when other writers keep claiming each free name between our check and move.
MAX_COLLISION_ATTEMPTS = 100


def numbered_path(path: Path, counter: int) -> Path:
    """Returns 'name (counter).ext' next to `path`."""
    return path.with_name(f"{path.stem} ({counter}){path.suffix}")


def get_unique_path(destination_path: Path, start: int = 1) -> Path:
    """
    Generates a free path by appending a counter before the extension.

    Example:
        If 'photo.jpg' exists, it returns 'photo (1).jpg'.
        If 'photo (1).jpg' also exists, it returns 'photo (2).jpg'.

    Args:
        destination_path: The intended destination path.
        start: First counter to try once the plain name is taken.

    Returns:
        A path that did not exist at the time of the check.
    """
    if start <= 1 and not destination_path.exists():
        return destination_path

    counter = max(start, 1)
    while True:
        new_path = numbered_path(destination_path, counter)
        if not new_path.exists():
            logger.debug(f"Found unique path for '{destination_path}': '{new_path}'")
            return new_path
        counter += 1


def _suffix_counter(original: Path, candidate: Path) -> int:
    """Returns the counter embedded in `candidate`, or 0 for the plain name."""
    if candidate == original:
        return 0
    prefix = f"{original.stem} ("
    stem = candidate.stem
    if stem.startswith(prefix) and stem.endswith(")"):
        try:
            return int(stem[len(prefix):-1])
        except ValueError:
            pass
    return 0


def _move_no_clobber(source_path: Path, destination_path: Path):
    """
    Moves a file, raising FileExistsError instead of replacing an existing file.

    A hard link followed by unlinking the source is atomic with respect to the
    destination name. Filesystems without hard links, and moves across
    devices, fall back to a fresh existence check and shutil.move.
    """
    try:
        if os.link in os.supports_follow_symlinks:
            # A symlink is moved as the link itself, not as a hard link to its target.
            os.link(source_path, destination_path, follow_symlinks=False)
        elif source_path.is_symlink():
            raise OSError(errno.ENOTSUP, "Cannot hard link a symlink itself", str(source_path))
        else:
            os.link(source_path, destination_path)
    except (FileExistsError, FileNotFoundError):
        raise
    except OSError as e:
        logger.debug(f"Hard link not possible for '{source_path.name}' ({e}), using shutil.move.")
        if os.path.lexists(destination_path):
            raise FileExistsError(errno.EEXIST, "Destination exists", str(destination_path))
        shutil.move(str(source_path), str(destination_path))
        return

    try:
        os.unlink(source_path)
    except OSError:
        # Leave exactly one copy behind: drop the link we just created.
        os.unlink(destination_path)
        raise


def move_file(source_path: Path, destination_path: Path) -> Path:
    """
    Moves `source_path` to `destination_path` or to the next free suffixed name.

    The destination directory is created if missing. If another writer takes
    the chosen name between the check and the move, the next suffix is tried.

    Args:
        source_path: The file to move.
        destination_path: The preferred final path.

    Returns:
        The path the file ended up at.

    Raises:
        FileNotFoundError: The source vanished before it could be moved.
        FileExistsError: No free name was found within MAX_COLLISION_ATTEMPTS.
        OSError: Any other failure of the underlying move.
    """
    destination_path.parent.mkdir(parents=True, exist_ok=True)

    target = get_unique_path(destination_path)
    for _ in range(MAX_COLLISION_ATTEMPTS):
        try:
            _move_no_clobber(source_path, target)
            logger.debug(f"Moved '{source_path}' to '{target}'")
            return target
        except FileExistsError:
            logger.debug(f"'{target.name}' appeared before the move, trying the next name.")
            target = get_unique_path(destination_path, _suffix_counter(destination_path, target) + 1)

    raise FileExistsError(errno.EEXIST, "No free destination name", str(destination_path))
