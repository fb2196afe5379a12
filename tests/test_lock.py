"""
Tests for the run lock and cancellation token.
"""

import os
import signal

import pytest

from provisioner.core.engine.cancel import CancelToken, cancel_on_signals
from provisioner.core.engine.lock import RunLock
from provisioner.core.errors import AlreadyRunning, LockError


class TestRunLock:
    def test_acquire_release(self, tmp_path):
        lock = RunLock(tmp_path / "run.lock")
        lock.acquire()
        assert lock.held
        assert f"pid={os.getpid()}" in lock.path.read_text()
        lock.release()
        assert not lock.held
        assert lock.path.exists()

    def test_second_holder_rejected(self, tmp_path):
        path = tmp_path / "run.lock"
        with RunLock(path):
            with pytest.raises(AlreadyRunning) as exc:
                RunLock(path).acquire()
        assert str(path) in str(exc.value)
        assert f"pid={os.getpid()}" in exc.value.holder

    def test_reacquire_after_release(self, tmp_path):
        path = tmp_path / "run.lock"
        with RunLock(path):
            pass
        with RunLock(path) as again:
            assert again.held

    def test_double_acquire_same_object(self, tmp_path):
        lock = RunLock(tmp_path / "run.lock")
        with lock:
            with pytest.raises(LockError):
                lock.acquire()

    def test_release_without_acquire_is_noop(self, tmp_path):
        RunLock(tmp_path / "run.lock").release()

    def test_creates_parent_dir(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "run.lock"
        with RunLock(path):
            assert path.exists()

    def test_already_running_is_lock_error(self):
        assert issubclass(AlreadyRunning, LockError)


class TestCancelToken:
    def test_default_not_cancelled(self):
        token = CancelToken()
        assert not token.cancelled
        assert token.reason == ""

    def test_first_reason_wins(self):
        token = CancelToken()
        token.cancel("first")
        token.cancel("second")
        assert token.cancelled
        assert token.reason == "first"

    def test_signal_sets_token(self):
        token = CancelToken()
        with cancel_on_signals(token, signals=(signal.SIGUSR1,)):
            os.kill(os.getpid(), signal.SIGUSR1)
        assert token.cancelled
        assert "SIGUSR1" in token.reason

    def test_handler_restored(self):
        before = signal.getsignal(signal.SIGUSR1)
        with cancel_on_signals(CancelToken(), signals=(signal.SIGUSR1,)):
            assert signal.getsignal(signal.SIGUSR1) is not before
        assert signal.getsignal(signal.SIGUSR1) is before
