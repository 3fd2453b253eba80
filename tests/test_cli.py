# tests/test_cli.py

import json

import pytest
from click.testing import CliRunner

from conftest import make_file

from downloads_sorter.cli.main import sorter


@pytest.fixture
def run(config_dir):
    """Invokes the CLI against the test configuration directory."""
    runner = CliRunner()

    def _run(*args, **kwargs):
        return runner.invoke(sorter, ["--config-dir", str(config_dir), *args], **kwargs)
    return _run


def test_rules_add_list_remove(run, config_dir):
    result = run("rules", "add", "MKV", "Videos")
    assert result.exit_code == 0
    assert json.loads((config_dir / "rules.json").read_text())[".mkv"] == "Videos"

    result = run("rules", "list")
    assert result.exit_code == 0
    assert ".mkv" in result.output and "Videos" in result.output

    result = run("rules", "remove", ".mkv")
    assert result.exit_code == 0
    assert ".mkv" not in json.loads((config_dir / "rules.json").read_text())


def test_settings_set_and_show(run, config_dir, watched_dir):
    result = run("settings", "set", "--source", str(watched_dir), "--min-size", "2048", "--by-date")
    assert result.exit_code == 0

    saved = json.loads((config_dir / "settings.json").read_text())
    assert saved["source_path"] == str(watched_dir.resolve())
    assert saved["min_file_size"] == 2048
    assert saved["organize_by_date"] is True

    result = run("settings", "show")
    assert "2048 bytes" in result.output


def test_settings_set_without_options(run):
    result = run("settings", "set")
    assert result.exit_code == 0
    assert "No changes" in result.output


def test_sort_moves_backlog_and_updates_stats(run, rule_store, watched_dir):
    make_file(watched_dir, "song.mp3")
    make_file(watched_dir, "notes.xyz")

    result = run("sort")

    assert result.exit_code == 0, result.output
    assert "Moved 1 of 2 files" in result.output
    assert (watched_dir / "Audio" / "song.mp3").exists()
    assert (watched_dir / "notes.xyz").exists()

    result = run("stats")
    assert "Files sorted today" in result.output
    assert "1" in result.output


def test_sort_dry_run_moves_nothing(run, rule_store, watched_dir):
    song = make_file(watched_dir, "song.mp3")

    result = run("sort", "--dry-run")

    assert result.exit_code == 0
    assert "song.mp3" in result.output
    assert song.exists()


def test_watch_accepts_commands_until_quit(run, rule_store, watched_dir):
    result = run("watch", input="stats\nundo\nbogus\nquit\n")

    assert result.exit_code == 0, result.output
    assert "Files sorted today" in result.output
    assert "Unknown command 'bogus'" in result.output
