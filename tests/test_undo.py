# tests/test_undo.py

import time
from pathlib import Path

from conftest import collect, make_file, wait_until

from downloads_sorter.core.undo_manager import MoveRecord, UndoStack, UndoStatus


# --- UndoStack ---

def test_stack_is_lifo():
    stack = UndoStack()
    first = MoveRecord(Path("/sorted/a.jpg"), Path("/downloads/a.jpg"))
    second = MoveRecord(Path("/sorted/b.jpg"), Path("/downloads/b.jpg"))

    stack.push(first)
    stack.push(second)

    assert len(stack) == 2
    assert stack.pop() is second
    assert stack.pop() is first
    assert stack.pop() is None
    assert not stack.can_undo


# --- Engine undo ---

def test_undo_with_empty_history_is_a_no_op(engine):
    flags = collect(engine.undo_availability_changed)

    assert engine.undo_last() == (UndoStatus.NOTHING_TO_UNDO, None)
    assert flags == []


def test_undo_restores_original_path(engine, watched_dir):
    original = make_file(watched_dir, "song.mp3")
    engine.sort_now(original)
    assert not original.exists()

    status, restored = engine.undo_last()

    assert status is UndoStatus.RESTORED
    assert restored == original
    assert original.exists()
    assert not (watched_dir / "Audio" / "song.mp3").exists()
    assert engine.files_processed_today == 0
    assert engine.total_files_processed == 1


def test_n_moves_give_exactly_n_undos_in_reverse_order(engine, watched_dir):
    names = ["a.jpg", "b.pdf", "c.mp3"]
    for name in names:
        engine.sort_now(make_file(watched_dir, name))
    assert engine.undo_depth == 3

    restored = [engine.undo_last()[1].name for _ in names]

    assert restored == list(reversed(names))
    assert engine.undo_last() == (UndoStatus.NOTHING_TO_UNDO, None)
    assert not engine.can_undo


def test_undo_availability_events(engine, watched_dir):
    engine.sort_now(make_file(watched_dir, "a.jpg"))
    engine.sort_now(make_file(watched_dir, "b.jpg"))
    flags = collect(engine.undo_availability_changed)

    engine.undo_last()
    engine.undo_last()

    assert flags == [(True,), (False,)]


def test_undo_of_colliding_move_does_not_overwrite(engine, watched_dir):
    """photo.jpg sorted as 'photo (1).jpg' goes back to its own original path, leaving the first one alone."""
    images = watched_dir / "Images"
    images.mkdir()
    (images / "photo.jpg").write_text("first")
    second = watched_dir / "photo.jpg"
    second.write_text("second")

    assert engine.sort_now(second) == images / "photo (1).jpg"
    status, restored = engine.undo_last()

    assert status is UndoStatus.RESTORED
    assert restored == second
    assert second.read_text() == "second"
    assert (images / "photo.jpg").read_text() == "first"


def test_undo_onto_occupied_original_gets_suffix(engine, watched_dir):
    original = make_file(watched_dir, "report.pdf")
    engine.sort_now(original)
    original.write_text("a new download with the same name")

    status, restored = engine.undo_last()

    assert status is UndoStatus.RESTORED
    assert restored == watched_dir / "report (1).pdf"
    assert original.read_text() == "a new download with the same name"


def test_undo_when_sorted_file_is_gone(engine, watched_dir):
    moved = engine.sort_now(make_file(watched_dir, "clip.mp3"))
    moved.unlink()

    assert engine.undo_last() == (UndoStatus.FILE_MISSING, None)
    # The record was consumed; nothing is left to undo.
    assert engine.undo_last() == (UndoStatus.NOTHING_TO_UNDO, None)
    assert engine.files_processed_today == 1


def test_daily_counter_never_goes_negative(engine, statistics_store, watched_dir):
    engine.sort_now(make_file(watched_dir, "a.jpg"))
    # As if the day rolled over between the move and the undo.
    engine._stats.files_processed_today = 0

    engine.undo_last()

    assert engine.files_processed_today == 0
    assert statistics_store.load().files_processed_today == 0


def test_expired_restore_marks_are_dropped(engine, watched_dir, monkeypatch):
    from downloads_sorter.core import sort_engine

    engine.sort_now(make_file(watched_dir, "a.jpg"))
    engine.sort_now(make_file(watched_dir, "b.jpg"))

    # b's grace window has already run out by the time a is restored.
    monkeypatch.setattr(sort_engine, "UNDO_GRACE_SECONDS", -1.0)
    engine.undo_last()
    monkeypatch.setattr(sort_engine, "UNDO_GRACE_SECONDS", 5.0)
    engine.undo_last()

    assert list(engine._recently_restored) == [sort_engine._path_key(watched_dir / "a.jpg")]


def test_restored_file_is_not_sorted_again(engine, watched_dir):
    original = make_file(watched_dir, "photo.jpg")
    moved = watched_dir / "Images" / "photo.jpg"
    engine.start()
    assert wait_until(lambda: engine.can_undo)

    status, restored = engine.undo_last()
    time.sleep(0.5)

    assert status is UndoStatus.RESTORED
    assert restored == original
    assert original.exists()
    assert not moved.exists()
