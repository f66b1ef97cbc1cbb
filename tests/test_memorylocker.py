import threading

import pytest

from tusstore.errors import FileLockedError
from tusstore.memorylocker import MemoryLocker


def test_memory_locker():
    locker = MemoryLocker()

    lock1 = locker.new_lock("one")
    lock1.lock()
    with pytest.raises(FileLockedError):
        lock1.lock()

    lock2 = locker.new_lock("one")
    with pytest.raises(FileLockedError):
        lock2.lock()

    lock1.unlock()
    lock1.unlock()

    lock2.lock()
    with pytest.raises(FileLockedError):
        lock1.lock()


def test_different_ids_are_independent():
    locker = MemoryLocker()
    locker.new_lock("one").lock()
    locker.new_lock("two").lock()
    with pytest.raises(FileLockedError):
        locker.new_lock("two").lock()


def test_separate_lockers_do_not_share_locks():
    first = MemoryLocker()
    second = MemoryLocker()
    first.new_lock("one").lock()
    second.new_lock("one").lock()
    with pytest.raises(FileLockedError):
        second.new_lock("one").lock()


def test_lock_as_context_manager_releases_on_exit():
    locker = MemoryLocker()
    with locker.new_lock("one"):
        with pytest.raises(FileLockedError):
            locker.new_lock("one").lock()
    other = locker.new_lock("one")
    other.lock()
    with pytest.raises(FileLockedError):
        locker.new_lock("one").lock()


def test_lock_keeps_its_id():
    locker = MemoryLocker()
    lock = locker.new_lock("upload-id")
    assert lock.id == "upload-id"
    assert lock.locker is locker


def test_only_one_thread_obtains_the_lock():
    locker = MemoryLocker()
    winners = []
    losers = []
    results_guard = threading.Lock()
    barrier = threading.Barrier(16)

    def attempt():
        barrier.wait()
        lock = locker.new_lock("shared")
        try:
            lock.lock()
        except FileLockedError as exc:
            with results_guard:
                losers.append(exc)
            return
        with results_guard:
            winners.append(lock)

    threads = [threading.Thread(target=attempt) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1
    assert len(losers) == 15
    assert all(exc.status_code == 423 for exc in losers)

    with pytest.raises(FileLockedError):
        locker.new_lock("shared").lock()

    winners[0].unlock()
    successor = locker.new_lock("shared")
    successor.lock()
    with pytest.raises(FileLockedError):
        locker.new_lock("shared").lock()