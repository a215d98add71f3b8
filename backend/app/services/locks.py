"""进程内按键互斥锁"""
from __future__ import annotations

import threading
from collections.abc import Hashable, Iterable, Iterator
from contextlib import contextmanager


class KeyedLocks:
    """
    为任意键提供独立的互斥锁

    同一 (user_id, entitlement_id) 的更新在本进程内串行执行；
    跨进程由数据库行锁（SELECT ... FOR UPDATE）保证。
    不再使用的锁会被回收。
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}
        self._refs: dict[Hashable, int] = {}

    def _acquire_ref(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
                self._refs[key] = 0
            self._refs[key] += 1
            return lock

    def _release_ref(self, key: Hashable) -> None:
        with self._guard:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]

    @contextmanager
    def hold(self, keys: Iterable[Hashable]) -> Iterator[None]:
        """按排序后的顺序获取多把锁，避免死锁"""
        ordered = sorted(set(keys), key=repr)
        acquired: list[Hashable] = []
        try:
            for key in ordered:
                lock = self._acquire_ref(key)
                acquired.append(key)
                lock.acquire()
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._release_ref(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
