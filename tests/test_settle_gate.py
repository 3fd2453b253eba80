# tests/test_settle_gate.py

import os
from pathlib import Path

import pytest

from downloads_sorter.core.settle_gate import (
    Candidate, EventKind, SettleGate, SettlePolicy, SettleState, is_safe_to_move,
)


def _probe_sequence(*results):
    """A probe that answers with `results` in order, then keeps repeating the last one."""
    answers = list(results)

    def probe(path: Path) -> bool:
        return answers.pop(0) if len(answers) > 1 else answers[0]
    return probe


def test_settled_on_first_check(tmp_path):
    gate = SettleGate(probe=_probe_sequence(True))
    candidate = Candidate(tmp_path / "a.pdf", EventKind.CREATED)

    assert gate.check(candidate) is SettleState.SETTLED
    assert candidate.history == [SettleState.CHECKING, SettleState.SETTLED]
    assert candidate.retries == 0


def test_retries_then_settles(tmp_path):
    gate = SettleGate(probe=_probe_sequence(False, False, True))
    candidate = Candidate(tmp_path / "a.pdf", EventKind.CREATED)

    assert gate.check(candidate) is SettleState.RETRYING
    assert gate.check(candidate) is SettleState.RETRYING
    assert gate.check(candidate) is SettleState.SETTLED
    assert candidate.retries == 2


def test_abandoned_after_retry_budget(tmp_path):
    """One initial check plus three retries, then the candidate is given up."""
    gate = SettleGate(SettlePolicy(max_retries=3), probe=_probe_sequence(False))
    candidate = Candidate(tmp_path / "a.pdf", EventKind.MODIFIED)

    states = [gate.check(candidate) for _ in range(4)]

    assert states == [SettleState.RETRYING] * 3 + [SettleState.ABANDONED]
    assert candidate.retries == 3


def test_default_policy_delays():
    policy = SettlePolicy()
    assert policy.initial_delay(EventKind.CREATED) == 1.0
    assert policy.initial_delay(EventKind.MODIFIED) == 0.5
    assert policy.retry_delay == 2.0
    assert policy.max_retries == 3


def test_unlocked_file_is_safe(tmp_path):
    path = tmp_path / "done.zip"
    path.write_bytes(b"data")
    assert is_safe_to_move(path) is True


def test_missing_file_is_not_safe(tmp_path):
    assert is_safe_to_move(tmp_path / "missing.zip") is False


@pytest.mark.skipif(os.name == "nt", reason="flock is POSIX only")
def test_locked_file_is_not_safe(tmp_path):
    import fcntl

    path = tmp_path / "downloading.zip"
    path.write_bytes(b"partial")
    with open(path, 'r+b') as writer:
        fcntl.flock(writer.fileno(), fcntl.LOCK_EX)
        assert is_safe_to_move(path) is False
        fcntl.flock(writer.fileno(), fcntl.LOCK_UN)
        assert is_safe_to_move(path) is True
