"""
Background scrape jobs.

Jobs run as asyncio tasks and are observable by id while they run and for a
limited time afterwards. Records live in a key-value store (process memory by
default) and are lost on restart.
"""

import asyncio
import logging
import time
import uuid
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from config.config import DEFAULT_RESTAURANTS
from config.models import JobStatus, ScrapeConfig, ScrapeJob, ScrapeResult, utcnow
from utils.redis_cache import MemoryCache

JOB_TTL = 3600  # Finished jobs are kept for an hour


def new_job_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class JobTracker:
    """Starts scrape runs in the background and tracks their outcome."""

    def __init__(self, scraper: Any, store: Optional[Any] = None, ttl: int = JOB_TTL):
        """
        Args:
            scraper: Object exposing ``async scrape_menus(ScrapeConfig)``
            store: Key-value store with async get/set/items (MemoryCache by default)
            ttl: Seconds a finished job stays visible
        """
        self.scraper = scraper
        self.store = store if store is not None else MemoryCache()
        self.ttl = ttl
        self.logger = logging.getLogger(self.__class__.__name__)
        self._tasks: Set[asyncio.Task] = set()

    async def _start(
        self,
        prefix: str,
        job_type: str,
        config: Optional[ScrapeConfig],
        run: Callable[[], Awaitable[ScrapeResult]]
    ) -> ScrapeJob:
        job = ScrapeJob(job_id=new_job_id(prefix), job_type=job_type, config=config)
        await self.store.set(job.job_id, job)
        self.logger.info(f"📥 Accepted {job_type} job {job.job_id}")

        task = asyncio.create_task(self._run(job, run))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job

    async def _run(self, job: ScrapeJob, run: Callable[[], Awaitable[ScrapeResult]]) -> None:
        try:
            result = await run()
        except Exception as e:
            self.logger.error(f"❌ Scraper job {job.job_id} failed: {e}", exc_info=True)
            finished = job.model_copy(update={
                'status': JobStatus.FAILED,
                'completed_at': utcnow(),
                'error': str(e) or e.__class__.__name__,
            })
        else:
            self.logger.info(f"✅ Scraper job {job.job_id} completed: {result.items_saved} items saved")
            finished = job.model_copy(update={
                'status': JobStatus.COMPLETED,
                'completed_at': utcnow(),
                'result': result,
            })
        await self.store.set(job.job_id, finished, self.ttl)

    async def submit(self, config: Optional[ScrapeConfig] = None, job_type: str = "manual") -> ScrapeJob:
        """
        Start a scrape in the background.

        Args:
            config: What to scrape (scraper defaults when omitted)
            job_type: "manual", "refresh" or "scheduled"

        Returns:
            The job record, still running
        """
        config = config or ScrapeConfig()
        prefix = "refresh" if job_type == "refresh" else "scrape"
        return await self._start(prefix, job_type, config, lambda: self.scraper.scrape_menus(config))

    async def submit_template_refresh(self, restaurants: Optional[Sequence[str]] = None) -> ScrapeJob:
        """Refresh weekly templates: next seven days, forced."""
        today = self.scraper.today()
        config = ScrapeConfig(
            restaurants=list(restaurants or DEFAULT_RESTAURANTS),
            dates=[(today + timedelta(days=i)).isoformat() for i in range(7)],
            mode="full",
            force_refresh=True,
        )
        return await self.submit(config, job_type="refresh")

    async def submit_scheduled(self, scheduler: Any) -> ScrapeJob:
        """Run the scheduler's immediate scrape as a tracked job."""
        return await self._start("scheduled", "scheduled", None, scheduler.run_immediately)

    async def get(self, job_id: str) -> Optional[ScrapeJob]:
        return await self.store.get(job_id)

    async def list_jobs(self) -> List[ScrapeJob]:
        return [job for _, job in await self.store.items()]

    async def summary(self) -> Dict[str, Any]:
        """Running jobs, the ten most recent finished jobs and per-status counts."""
        jobs = await self.list_jobs()
        running = [j for j in jobs if j.status == JobStatus.RUNNING]
        finished = [j for j in jobs if j.status != JobStatus.RUNNING]
        return {
            'active_jobs': running,
            'recent_jobs': finished[-10:],
            'total_active': len(running),
            'total_completed': sum(1 for j in finished if j.status == JobStatus.COMPLETED),
            'total_failed': sum(1 for j in finished if j.status == JobStatus.FAILED),
        }

    async def wait(self) -> None:
        """Wait for every background job to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
