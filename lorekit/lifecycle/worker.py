"""
Background Worker - fire-and-forget side effects off the request path.

Usage tracking and embedding generation are queued as jobs and processed by
a single daemon thread. Failures are logged and dropped; nothing here ever
reaches the caller that queued the job.
"""

import threading
import queue
import logging
import time
from dataclasses import dataclass
from typing import Optional
from enum import Enum

from lorekit.protocols import EmbedProvider

logger = logging.getLogger("lorekit.lifecycle")


class JobType(Enum):
    RECORD_ACCESS = "record_access"
    GENERATE_EMBEDDING = "generate_embedding"


@dataclass
class WorkerJob:
    """A background job."""
    job_type: JobType
    data: dict
    priority: int = 0


class BackgroundWorker:
    """Background worker for usage tracking and embedding generation."""

    def __init__(
        self,
        store,
        embed: Optional[EmbedProvider] = None,
        embed_model: str = "",
        max_queue_size: int = 200,
    ):
        self._store = store
        self._embed = embed
        self._embed_model = embed_model
        self._queue: queue.PriorityQueue = queue.PriorityQueue(maxsize=max_queue_size)
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._started = False
        self._stopped = False
        self._job_counter = 0
        self._lock = threading.Lock()
        self._idle = threading.Condition()
        self._pending = 0
        self.completed_jobs = 0
        self.failed_jobs = 0

    def _ensure_started(self):
        """Lazily start the worker thread on first job."""
        if self._started:
            return
        with self._lock:
            if self._started:
                return
            self._started = True
            self._running = True
            self._thread = threading.Thread(target=self._run, daemon=True, name="lorekit-worker")
            self._thread.start()
            logger.info("[Worker] Thread started")

    def stop(self):
        """Stop the worker thread. Jobs still queued are discarded."""
        self._stopped = True
        dropped = self._drain()
        if dropped:
            logger.info(f"[Worker] Discarded {dropped} queued jobs on stop")
        if not self._running:
            return
        self._running = False
        try:
            self._queue.put_nowait((0, 0, None))
        except queue.Full:
            pass
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2.0)
        logger.info("[Worker] Thread stopped")

    def _drain(self) -> int:
        """Remove every queued job and release its pending count."""
        dropped = 0
        while True:
            try:
                _, _, job = self._queue.get_nowait()
            except queue.Empty:
                break
            if job is None:
                continue
            dropped += 1
            with self._idle:
                self._pending -= 1
                self._idle.notify_all()
        return dropped

    def queue_job(self, job: WorkerJob) -> bool:
        """Queue a job (non-blocking). Returns True if queued."""
        if self._stopped:
            return False
        self._ensure_started()
        with self._lock:
            self._job_counter += 1
            counter = self._job_counter
        with self._idle:
            self._pending += 1
        try:
            self._queue.put_nowait((-job.priority, counter, job))
            logger.debug(f"[Worker] Queued {job.job_type.value} job")
            return True
        except queue.Full:
            with self._idle:
                self._pending -= 1
                self._idle.notify_all()
            logger.warning("[Worker] Queue full, dropping job")
            return False

    def record_access(self, item_ids: list[str]) -> bool:
        """Queue a usage-tracking update for the given items."""
        if not item_ids:
            return False
        return self.queue_job(WorkerJob(JobType.RECORD_ACCESS, {"item_ids": list(item_ids)}))

    def generate_embedding(self, item_id: str) -> bool:
        """Queue embedding generation for one item."""
        if self._embed is None:
            logger.debug("[Worker] No embed provider, skipping embedding for %s", item_id)
            return False
        return self.queue_job(WorkerJob(JobType.GENERATE_EMBEDDING, {"item_id": item_id}, priority=1))

    def flush(self, timeout: float = 5.0) -> bool:
        """Block until every queued job has been processed. Returns False on timeout."""
        deadline = time.monotonic() + timeout
        with self._idle:
            while self._pending > 0:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def _run(self):
        """Main worker loop."""
        logger.info("[Worker] Loop starting")
        while self._running:
            try:
                priority, counter, job = self._queue.get(timeout=1.0)
            except queue.Empty:
                continue
            if job is None:
                break
            try:
                self._process_job(job)
            except Exception as e:
                logger.error(f"[Worker] Unexpected error: {e}", exc_info=True)
            finally:
                with self._idle:
                    self._pending -= 1
                    self._idle.notify_all()
        logger.info("[Worker] Loop exiting")

    def _process_job(self, job: WorkerJob):
        """Process a single job."""
        start = time.time()
        try:
            if job.job_type == JobType.RECORD_ACCESS:
                self._record_access(job.data["item_ids"])
            elif job.job_type == JobType.GENERATE_EMBEDDING:
                from lorekit.core.embeddings import embed_item
                embed_item(self._store, self._embed, job.data["item_id"], self._embed_model)
            self.completed_jobs += 1
            elapsed = time.time() - start
            logger.debug(f"[Worker] Completed {job.job_type.value} job in {elapsed * 1000:.1f}ms")
        except Exception as e:
            self.failed_jobs += 1
            logger.error(f"[Worker] {job.job_type.value} job failed: {e}", exc_info=True)

    def _record_access(self, item_ids: list[str]):
        """Bump usage counters one id at a time; one failure doesn't stop the rest."""
        failures = 0
        for item_id in item_ids:
            try:
                self._store.record_access(item_id)
            except Exception:
                failures += 1
                logger.warning(f"[Worker] Failed to record access for {item_id}", exc_info=True)
        if failures:
            logger.warning(f"[Worker] Access tracking failed for {failures}/{len(item_ids)} items")
