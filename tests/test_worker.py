"""
Tests for the background worker: usage tracking and embedding jobs,
failure isolation, queue limits, shutdown.
"""

import threading

import pytest

from lorekit.core.store import SQLiteItemStore
from lorekit.lifecycle.worker import BackgroundWorker, JobType, WorkerJob


class MockEmbedProvider:
    def __init__(self, dims=8):
        self.dims = dims

    def embed(self, text: str) -> list[float]:
        import hashlib
        h = hashlib.sha256(text.encode()).digest()
        return [b / 255.0 for b in h[:self.dims]]

    def embed_query(self, text: str) -> list[float]:
        return self.embed(text)


class ClosedStore:
    """A store whose connection has gone away."""

    def record_access(self, item_id):
        raise RuntimeError("Cannot operate on a closed database")


class FlakyStore:
    """Fails for one id, records the rest."""

    def __init__(self, bad_id):
        self.bad_id = bad_id
        self.recorded = []

    def record_access(self, item_id):
        if item_id == self.bad_id:
            raise RuntimeError("row locked")
        self.recorded.append(item_id)


class BlockingStore:
    """Holds the worker thread inside record_access until released."""

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()

    def record_access(self, item_id):
        self.entered.set()
        self.release.wait(timeout=5.0)


@pytest.fixture
def store(tmp_path):
    return SQLiteItemStore(tmp_path / "knowledge.db")


@pytest.fixture
def item(store):
    return store.create_item(
        project="alpha",
        file_context="db/pool.py",
        category="gotcha",
        summary="Pool exhaustion under load",
        content="Set pool_pre_ping and cap overflow at 10.",
    )


class TestUsageJobs:
    def test_record_access(self, store, item):
        worker = BackgroundWorker(store)
        try:
            assert worker.record_access([item.id, item.id]) is True
            assert worker.flush()
        finally:
            worker.stop()
        assert store.get_item_by_id(item.id).access_count == 2
        assert worker.completed_jobs == 1

    def test_empty_ids_not_queued(self, store):
        worker = BackgroundWorker(store)
        assert worker.record_access([]) is False
        worker.stop()

    def test_closed_store_is_swallowed(self):
        worker = BackgroundWorker(ClosedStore())
        try:
            assert worker.record_access(["ki_a", "ki_b"]) is True
            assert worker.flush()
        finally:
            worker.stop()
        # Per-item failures are logged, the job itself still completes
        assert worker.completed_jobs == 1
        assert worker.failed_jobs == 0

    def test_one_failure_does_not_stop_the_rest(self):
        flaky = FlakyStore("ki_bad")
        worker = BackgroundWorker(flaky)
        try:
            worker.record_access(["ki_a", "ki_bad", "ki_c"])
            assert worker.flush()
        finally:
            worker.stop()
        assert flaky.recorded == ["ki_a", "ki_c"]


class TestEmbeddingJobs:
    def test_generate_embedding(self, store, item):
        worker = BackgroundWorker(store, embed=MockEmbedProvider(), embed_model="mock")
        try:
            assert worker.generate_embedding(item.id) is True
            assert worker.flush()
        finally:
            worker.stop()
        assert len(store.get_item_embedding(item.id)) == 8
        assert store.get_item_by_id(item.id).embedding_model == "mock"

    def test_without_provider(self, store, item):
        worker = BackgroundWorker(store)
        assert worker.generate_embedding(item.id) is False
        worker.stop()

    def test_provider_error_counts_as_failed(self, store, item):
        class Broken:
            def embed(self, text):
                raise TimeoutError("ollama timed out")

        worker = BackgroundWorker(store, embed=Broken())
        try:
            worker.generate_embedding(item.id)
            assert worker.flush()
        finally:
            worker.stop()
        assert worker.failed_jobs == 1
        assert store.get_item_embedding(item.id) is None


class TestLifecycle:
    def test_stopped_worker_rejects_jobs(self, store, item):
        worker = BackgroundWorker(store)
        worker.stop()
        assert worker.record_access([item.id]) is False

    def test_queue_full_drops_job(self):
        blocking = BlockingStore()
        worker = BackgroundWorker(blocking, max_queue_size=1)
        try:
            assert worker.record_access(["ki_first"]) is True
            assert blocking.entered.wait(timeout=5.0)
            # Worker is busy with the first job; one slot left in the queue
            assert worker.record_access(["ki_second"]) is True
            assert worker.record_access(["ki_third"]) is False
        finally:
            blocking.release.set()
            worker.flush()
            worker.stop()

    def test_flush_timeout(self):
        blocking = BlockingStore()
        worker = BackgroundWorker(blocking)
        try:
            worker.record_access(["ki_a"])
            assert blocking.entered.wait(timeout=5.0)
            assert worker.flush(timeout=0.05) is False
        finally:
            blocking.release.set()
            worker.flush()
            worker.stop()

    def test_higher_priority_first(self):
        order = []

        class Store:
            def record_access(self, item_id):
                order.append(item_id)

        blocking = BlockingStore()

        class GatedStore(Store):
            def record_access(self, item_id):
                if item_id == "gate":
                    blocking.record_access(item_id)
                    return
                super().record_access(item_id)

        worker = BackgroundWorker(GatedStore())
        try:
            worker.record_access(["gate"])
            assert blocking.entered.wait(timeout=5.0)
            worker.queue_job(WorkerJob(JobType.RECORD_ACCESS, {"item_ids": ["low"]}))
            worker.queue_job(WorkerJob(JobType.RECORD_ACCESS, {"item_ids": ["high"]}, priority=5))
            blocking.release.set()
            assert worker.flush()
        finally:
            blocking.release.set()
            worker.stop()
        assert order == ["high", "low"]


class TestStop:
    def _gated_store(self):
        blocking = BlockingStore()

        class GatedStore:
            recorded = []

            def record_access(self, item_id):
                if item_id == "gate":
                    blocking.record_access(item_id)
                    return
                self.recorded.append(item_id)

        return GatedStore(), blocking

    def test_stop_discards_queued_jobs_and_flush_returns(self):
        store, blocking = self._gated_store()
        worker = BackgroundWorker(store)
        worker.record_access(["gate"])
        assert blocking.entered.wait(timeout=5.0)
        for i in range(5):
            assert worker.record_access([f"ki_{i}"]) is True

        timer = threading.Timer(0.1, blocking.release.set)
        timer.start()
        try:
            worker.stop()
        finally:
            timer.join()

        assert worker.flush(timeout=0.5) is True
        assert store.recorded == []

    def test_flush_after_stop_on_idle_worker(self, store, item):
        worker = BackgroundWorker(store)
        worker.record_access([item.id])
        assert worker.flush()
        worker.stop()
        assert worker.flush(timeout=0.1) is True
        assert store.get_item_by_id(item.id).access_count == 1
