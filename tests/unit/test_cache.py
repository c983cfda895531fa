"""Unit tests for the project cache and the read/write lock."""

import threading
import time

import pytest

from qix.cache import ProjectCache
from qix.errors import FlushError, StorageIOError
from qix.locking import ReadWriteLock
from qix.models import Project


class TestProjectCache:
    """Test cases for ProjectCache bookkeeping."""

    def test_get_miss_and_put(self):
        cache = ProjectCache()
        assert cache.get("demo") is None

        project = Project(name="demo")
        cache.put("demo", project)

        assert cache.get("demo") is project
        assert "demo" in cache
        assert len(cache) == 1
        assert cache.names() == ["demo"]

    def test_dirty_transitions(self):
        cache = ProjectCache()
        cache.put("demo", Project(name="demo"))
        assert not cache.is_dirty("demo")

        cache.mark_dirty("demo")
        assert cache.is_dirty("demo")
        assert cache.dirty_names() == ["demo"]

        cache.clear_dirty("demo")
        assert not cache.is_dirty("demo")

    def test_invalidate_drops_entry_and_dirty_bit(self):
        cache = ProjectCache()
        cache.put("demo", Project(name="demo"))
        cache.mark_dirty("demo")

        cache.invalidate("demo")

        assert cache.get("demo") is None
        assert not cache.is_dirty("demo")

    def test_clear(self):
        cache = ProjectCache()
        cache.put("a", Project(name="a"))
        cache.put("b", Project(name="b"))
        cache.mark_dirty("b")

        cache.clear()

        assert cache.stats() == {"cached_projects": 0, "dirty_projects": 0}


class TestFlushAll:
    """Test cases for ProjectCache.flush_all."""

    def _dirty_cache(self, *names):
        cache = ProjectCache()
        for name in names:
            cache.put(name, Project(name=name))
            cache.mark_dirty(name)
        return cache

    def test_flush_saves_every_dirty_project(self):
        cache = self._dirty_cache("a", "b")
        cache.put("clean", Project(name="clean"))
        saved = []

        def save(name, project):
            saved.append(name)
            cache.clear_dirty(name)

        assert cache.flush_all(save) == ["a", "b"]
        assert saved == ["a", "b"]
        assert cache.dirty_names() == []

    def test_flush_continues_after_failure(self):
        """Every dirty project is attempted; the failure names the offender."""
        cache = self._dirty_cache("a", "b", "c")
        attempted = []

        def save(name, project):
            attempted.append(name)
            if name == "b":
                raise StorageIOError("disk full")
            cache.clear_dirty(name)

        with pytest.raises(FlushError, match="b") as excinfo:
            cache.flush_all(save)

        assert attempted == ["a", "b", "c"]
        assert set(excinfo.value.failures) == {"b"}
        assert excinfo.value.saved == ["a", "c"]
        assert cache.dirty_names() == ["b"]

    def test_flush_nothing_dirty(self):
        assert ProjectCache().flush_all(lambda name, project: None) == []


class TestReadWriteLock:
    """Test cases for ReadWriteLock."""

    def test_readers_share(self):
        lock = ReadWriteLock()
        lock.acquire_read()
        acquired = threading.Event()

        def reader():
            with lock.read():
                acquired.set()

        thread = threading.Thread(target=reader)
        thread.start()
        assert acquired.wait(timeout=2)
        thread.join()
        lock.release_read()

    def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        events = []

        lock.acquire_write()

        def reader():
            with lock.read():
                events.append("read")

        thread = threading.Thread(target=reader)
        thread.start()
        time.sleep(0.05)
        events.append("write-done")
        lock.release_write()
        thread.join(timeout=2)

        assert events == ["write-done", "read"]

    def test_writer_waits_for_readers(self):
        lock = ReadWriteLock()
        events = []

        lock.acquire_read()

        def writer():
            with lock.write():
                events.append("write")

        thread = threading.Thread(target=writer)
        thread.start()
        time.sleep(0.05)
        events.append("read-done")
        lock.release_read()
        thread.join(timeout=2)

        assert events == ["read-done", "write"]
