"""
Worker loop: claim → process (bounded concurrency) → repeat.

- Claim failures are logged and count toward an exponential backoff
- request_stop() stops claiming; the in-flight batch finishes first
- No state survives between iterations beyond the failure counter
"""
from __future__ import annotations
import asyncio

from tour_intake.jobs.claimer import JobClaimer
from tour_intake.worker.processor import JobProcessor
import structlog

logger = structlog.get_logger()


class WorkerLoop:
    def __init__(
        self,
        session_factory,
        claimer: JobClaimer,
        processor: JobProcessor,
        worker_id: str,
        batch_size: int = 3,
        concurrency: int = 2,
        poll_interval: float = 5.0,
        max_backoff: float = 60.0,
    ) -> None:
        self._factory = session_factory
        self._claimer = claimer
        self._processor = processor
        self._worker_id = worker_id
        self._batch_size = batch_size
        self._concurrency = concurrency
        self._poll_interval = poll_interval
        self._max_backoff = max_backoff
        self._stop = asyncio.Event()
        self.consecutive_failures = 0

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def request_stop(self) -> None:
        if not self._stop.is_set():
            logger.info("worker_stop_requested", worker_id=self._worker_id)
        self._stop.set()

    async def run_once(self, batch_size: int | None = None) -> int:
        """One claim + process pass. Returns the number of jobs handled."""
        limit = batch_size or self._batch_size
        try:
            async with self._factory() as db:
                async with db.begin():
                    jobs = await self._claimer.claim_batch(db, self._worker_id, limit)
        except Exception:
            self.consecutive_failures += 1
            logger.exception("claim_failed", worker_id=self._worker_id,
                             consecutive_failures=self.consecutive_failures)
            return 0

        self.consecutive_failures = 0
        if not jobs:
            return 0

        sem = asyncio.Semaphore(self._concurrency)

        async def _bounded(job) -> str | None:
            async with sem:
                return await self._processor.process(job)

        outcomes = await asyncio.gather(*(_bounded(j) for j in jobs))
        logger.info("batch_processed", worker_id=self._worker_id, jobs=len(jobs),
                    outcomes=[o or "unwritten" for o in outcomes])
        return len(jobs)

    def next_delay(self, handled: int) -> float:
        if self.consecutive_failures:
            return min(self._poll_interval * (2 ** self.consecutive_failures),
                       self._max_backoff)
        if handled >= self._batch_size:
            return 0.0
        return self._poll_interval

    async def run_forever(self) -> None:
        logger.info("worker_loop_started", worker_id=self._worker_id,
                    batch_size=self._batch_size, concurrency=self._concurrency,
                    poll_interval=self._poll_interval)
        while not self._stop.is_set():
            handled = await self.run_once()
            await self._sleep(self.next_delay(handled))
        logger.info("worker_loop_stopped", worker_id=self._worker_id)

    async def _sleep(self, delay: float) -> None:
        if delay <= 0 or self._stop.is_set():
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
