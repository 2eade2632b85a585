"""Main daemon service for cronpost.

This module provides the long-running process that hosts the scheduler:
- Service lifecycle management (start/stop)
- Signal handling for graceful shutdown
- Periodic job store sync and optional keep-alive ping
"""

import asyncio
import logging
import signal
from contextlib import AbstractContextManager
from typing import Callable, List, Optional, Set

import httpx
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from cronpost.config import CronpostConfig
from cronpost.daemon.keepalive import KeepAlivePinger
from cronpost.daemon.sync import JobSync
from cronpost.database.connection import create_tables, get_db_session
from cronpost.database.repositories import JobRepository
from cronpost.scheduler.models import JobDefinition
from cronpost.scheduler.reconciler import Reconciler
from cronpost.scheduler.registry import TimerRegistry
from cronpost.scheduler.runner import ExecutionRunner
from cronpost.scheduler.sinks import DatabaseLogSink

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "cronpost:job-sync"
KEEPALIVE_JOB_ID = "cronpost:keepalive"

# Time left for the log write after a firing's HTTP call times out
DRAIN_GRACE_SECONDS = 5


class CronpostDaemon:
    """Hosts the scheduler and keeps it in step with the job store.

    Example:
        daemon = CronpostDaemon(config)

        await daemon.start()
        await daemon.run_until_shutdown()
        await daemon.stop()
    """

    def __init__(
        self,
        config: CronpostConfig,
        session_factory: Optional[Callable[[], AbstractContextManager[Session]]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the daemon service.

        Args:
            config: cronpost configuration
            session_factory: Session context manager factory (default: get_db_session)
            transport: HTTP transport for job requests and pings (tests only)
        """
        self._config = config
        self._session_factory = session_factory or (lambda: get_db_session(config))
        self._transport = transport
        self._runner: Optional[ExecutionRunner] = None
        self._registry: Optional[TimerRegistry] = None
        self._reconciler: Optional[Reconciler] = None
        self._sync: Optional[JobSync] = None
        self._pinger: Optional[KeepAlivePinger] = None
        self._housekeeping: Optional[AsyncIOScheduler] = None
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._pending_syncs: Set[asyncio.Task] = set()

    def _load_jobs(self) -> List[JobDefinition]:
        with self._session_factory() as session:
            return [job.to_definition() for job in JobRepository(session).get_all()]

    async def start(self) -> None:
        """Start the scheduler, schedule active jobs and begin housekeeping."""
        if self._running:
            logger.warning("Daemon already running")
            return

        logger.info("Starting cronpost daemon...")
        scheduler_config = self._config.scheduler
        http_config = self._config.http

        await asyncio.to_thread(create_tables, self._config)

        self._runner = ExecutionRunner(
            timeout=http_config.timeout,
            http_errors_as_failures=http_config.http_errors_as_failures,
            max_connections=http_config.max_connections,
            user_agent=http_config.user_agent,
            transport=self._transport,
        )
        self._registry = TimerRegistry(
            timezone=scheduler_config.timezone,
            misfire_grace_time=scheduler_config.misfire_grace_time,
        )
        self._reconciler = Reconciler(
            self._registry,
            self._runner,
            DatabaseLogSink(self._session_factory),
            search_years=scheduler_config.search_years,
        )
        self._sync = JobSync(self._reconciler, self._load_jobs)

        jobs = await asyncio.to_thread(self._load_jobs)
        self._reconciler.on_startup(jobs)
        self._sync.prime(jobs)
        self._registry.start()

        self._housekeeping = self._create_housekeeping()
        self._housekeeping.start()

        self._running = True
        logger.info(f"cronpost daemon started with {len(self._registry.job_ids)} scheduled jobs")

    def _create_housekeeping(self) -> AsyncIOScheduler:
        """Scheduler for fixed-interval tasks, separate from job timers."""
        housekeeping = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={"coalesce": True, "max_instances": 1},
            timezone="UTC",
        )

        housekeeping.add_job(
            self._sync.run_once,
            trigger=IntervalTrigger(seconds=self._config.scheduler.check_interval),
            id=SYNC_JOB_ID,
            name="Job store sync",
        )

        keepalive = self._config.keepalive
        if keepalive.enabled and keepalive.url:
            self._pinger = KeepAlivePinger(keepalive.url, transport=self._transport)
            housekeeping.add_job(
                self._pinger.ping,
                trigger=IntervalTrigger(seconds=keepalive.interval),
                id=KEEPALIVE_JOB_ID,
                name="Keep-alive ping",
            )
            logger.info(f"Keep-alive ping to {keepalive.url} every {keepalive.interval}s")

        return housekeeping

    async def stop(self) -> None:
        """Stop all timers and release resources.

        Firings already in flight get up to the HTTP timeout to finish and
        record their result before the HTTP client is closed.
        """
        logger.info("Stopping cronpost daemon...")
        self._running = False

        if self._housekeeping and self._housekeeping.running:
            self._housekeeping.shutdown(wait=False)
        self._housekeeping = None

        for task in list(self._pending_syncs):
            task.cancel()

        if self._registry:
            self._registry.remove_all()
            self._registry.shutdown(wait=False)
            await self._registry.drain(timeout=self._config.http.timeout + DRAIN_GRACE_SECONDS)

        if self._pinger:
            await self._pinger.aclose()
            self._pinger = None

        if self._runner:
            await self._runner.aclose()

        logger.info("cronpost daemon stopped")

    async def sync_now(self) -> None:
        """Run one job store sync pass immediately."""
        if self._sync is not None:
            await self._sync.run_once()

    def request_sync(self) -> Optional[asyncio.Task]:
        """Start a sync pass in the background, e.g. from a signal handler.

        The CLI sends SIGHUP after editing jobs so that a deleted or paused
        job stops firing right away instead of at the next interval.

        Returns:
            The sync task, or None if the daemon is not running
        """
        if not self._running:
            return None
        task = asyncio.get_running_loop().create_task(self.sync_now(), name="job-sync")
        self._pending_syncs.add(task)
        task.add_done_callback(self._pending_syncs.discard)
        return task

    async def run_until_shutdown(self) -> None:
        """Block until request_shutdown() is called."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def reconciler(self) -> Optional[Reconciler]:
        return self._reconciler

    @property
    def registry(self) -> Optional[TimerRegistry]:
        return self._registry


async def run_daemon(config: CronpostConfig) -> None:
    """Run the daemon until SIGTERM or SIGINT.

    SIGHUP triggers an immediate job store sync.

    Args:
        config: cronpost configuration
    """
    daemon = CronpostDaemon(config)
    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        daemon.request_shutdown()

    def handle_reload() -> None:
        logger.info("Received SIGHUP, syncing jobs")
        daemon.request_sync()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda signum, frame: handle_signal(signal.Signals(signum)))

    if hasattr(signal, "SIGHUP"):
        loop.add_signal_handler(signal.SIGHUP, handle_reload)

    try:
        await daemon.start()
        await daemon.run_until_shutdown()
    finally:
        await daemon.stop()
