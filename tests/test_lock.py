"""Tests for the single-writer LockManager."""

import os
import threading
from pathlib import Path

import pytest

from wikiportable.errors import EXIT_LOCK_ERROR
from wikiportable.lock import LockError, LockManager
from wikiportable.logger import ErrorCode


@pytest.fixture
def lock_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / ".wiki.lock"


class TestLockManager:
    """Tests for acquiring and releasing the lock."""

    def test_acquire_and_release(self, lock_path: Path):
        lock = LockManager(lock_path)

        assert lock.acquire() is True
        assert lock.held
        assert lock_path.exists()
        assert lock.get_lock_holder_pid() == os.getpid()

        lock.release()
        assert not lock.held

    def test_lock_file_kept_after_release(self, lock_path: Path):
        with LockManager(lock_path):
            pass

        assert lock_path.exists()

    def test_release_without_acquire_is_noop(self, lock_path: Path):
        LockManager(lock_path).release()

    def test_context_manager_releases_on_exception(self, lock_path: Path):
        lock = LockManager(lock_path)

        with pytest.raises(RuntimeError):
            with lock:
                raise RuntimeError("boom")

        assert not lock.held
        assert not lock.is_locked()

    def test_second_holder_times_out(self, lock_path: Path):
        first = LockManager(lock_path)
        second = LockManager(lock_path, timeout=0.1)

        with first:
            with pytest.raises(LockError) as exc_info:
                second.acquire()

        err = exc_info.value
        assert str(os.getpid()) in err.message
        assert err.exit_code == EXIT_LOCK_ERROR
        assert err.status_code == 503
        assert err.error_code == ErrorCode.LOCK_HELD
        assert not second.held

    def test_lock_available_after_other_holder_releases(self, lock_path: Path):
        first = LockManager(lock_path)
        second = LockManager(lock_path, timeout=0.1)

        with first:
            assert second.is_locked()

        assert not second.is_locked()
        with second:
            assert second.held

    def test_threads_are_serialised(self, lock_path: Path):
        lock = LockManager(lock_path, timeout=0.1)
        errors = []

        def contender():
            try:
                lock.acquire()
            except LockError as e:
                errors.append(e)

        with lock:
            thread = threading.Thread(target=contender)
            thread.start()
            thread.join()

        assert len(errors) == 1
        assert not lock.held

    def test_waiting_thread_gets_lock_after_release(self, lock_path: Path):
        lock = LockManager(lock_path, timeout=5)
        acquired = threading.Event()
        release_now = threading.Event()

        def holder():
            with lock:
                acquired.set()
                release_now.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        acquired.wait(5)
        release_now.set()

        with lock:
            assert lock.held
        thread.join()

    def test_unopenable_lock_file(self, tmp_path: Path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("")
        lock = LockManager(blocker / ".wiki.lock", timeout=0.1)

        with pytest.raises(LockError) as exc_info:
            lock.acquire()

        assert exc_info.value.error_code == ErrorCode.LOCK_ACQUIRE_FAILED
