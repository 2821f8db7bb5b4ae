"""Scheduler service - keeps one ping timer per target and a traceroute cycle.

Timing:
- Each target gets its own ping job, first fired `index * ping_stagger_ms`
  after start and then every `ping_interval_ms` on a fixed cadence. A slow
  ping does not delay the next tick; up to `ping_max_instances` runs of the
  same target may overlap.
- Every `trace_interval_seconds` a cycle job fans out one traceroute per
  target, staggered by `trace_stagger_ms` in configured order. The cycle
  does not wait for its traceroutes to finish.
- Every outcome is stored on its own; a probe or insert failure is logged and
  the timers keep running.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import Settings, settings
from ..utils.time_utils import now_ms
from .prober import ProberService, ProbeUnavailableError, prober_service
from .store import ProbeStore, probe_store

logger = logging.getLogger(__name__)

TRACE_CYCLE_JOB_ID = "traceroute_cycle"

# A staggered traceroute may start late by this much before it is dropped
TRACE_MISFIRE_GRACE_SECONDS = 30


def ping_job_id(target: str) -> str:
    return f"ping:{target}"


class SchedulerService:
    """Service for scheduling ping and traceroute probes."""

    def __init__(
        self,
        cfg: Settings = settings,
        prober: ProberService = prober_service,
        store: ProbeStore = probe_store,
    ):
        self.settings = cfg
        self.prober = prober
        self.store = store
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    def start(self):
        """Start the scheduler. Must be called from the running event loop."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()
        start = datetime.now(timezone.utc)

        for index, target in enumerate(self.settings.targets):
            first_run = start + timedelta(milliseconds=index * self.settings.ping_stagger_ms)
            self.scheduler.add_job(
                self._ping_tick,
                trigger=IntervalTrigger(
                    seconds=self.settings.ping_interval_ms / 1000,
                    start_date=first_run,
                ),
                args=[target],
                id=ping_job_id(target),
                replace_existing=True,
                max_instances=self.settings.ping_max_instances,
                coalesce=False,
                misfire_grace_time=1,
            )

        # First cycle runs right away, then every trace interval
        self.scheduler.add_job(
            self._trace_cycle,
            trigger=IntervalTrigger(
                seconds=self.settings.trace_interval_seconds,
                start_date=start,
            ),
            id=TRACE_CYCLE_JOB_ID,
            replace_existing=True,
            next_run_time=start,
            max_instances=1,
            misfire_grace_time=TRACE_MISFIRE_GRACE_SECONDS,
        )

        self.scheduler.start()
        self._running = True
        logger.info(
            f"Scheduler started ({len(self.settings.targets)} targets, "
            f"ping every {self.settings.ping_interval_ms}ms, "
            f"traceroute every {self.settings.trace_interval_seconds}s)"
        )

    def stop(self):
        """Stop issuing new ticks; probes already running finish on their own."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self._running

    async def _ping_tick(self, target: str):
        """Ping one target and store the outcome."""
        ts = now_ms()
        try:
            outcome = await self.prober.run_ping(target, ts)
        except ProbeUnavailableError as e:
            logger.error(f"Ping tick for {target} skipped: {e}")
            return
        except Exception as e:
            logger.error(f"Error pinging {target}: {e}")
            return

        try:
            await self.store.insert_probe(outcome)
        except Exception as e:
            logger.error(f"DB insert ping error for {target} at {ts}: {e}")
            return

        logger.debug(f"Ping {target}: alive={outcome.alive} time_ms={outcome.time_ms}")

    async def _trace_cycle(self):
        """Fan out one staggered traceroute job per target."""
        cycle_ts = now_ms()
        cycle_start = datetime.now(timezone.utc)

        for index, target in enumerate(self.settings.targets):
            self.scheduler.add_job(
                self._trace_tick,
                trigger=DateTrigger(
                    run_date=cycle_start + timedelta(milliseconds=index * self.settings.trace_stagger_ms),
                ),
                args=[target, cycle_ts],
                id=f"trace:{target}:{cycle_ts}",
                misfire_grace_time=TRACE_MISFIRE_GRACE_SECONDS,
            )
        logger.debug(f"Traceroute cycle {cycle_ts} scheduled for {len(self.settings.targets)} targets")

    async def _trace_tick(self, target: str, cycle_ts: int):
        """Trace one target and store the outcome under the cycle timestamp."""
        try:
            outcome = await self.prober.run_traceroute(target, cycle_ts)
        except ProbeUnavailableError as e:
            logger.error(f"Traceroute for {target} skipped: {e}")
            return
        except Exception as e:
            logger.error(f"Error tracing {target}: {e}")
            return

        try:
            await self.store.insert_trace(outcome)
        except Exception as e:
            logger.error(f"DB insert trace error for {target} at {cycle_ts}: {e}")
            return

        logger.debug(f"Traceroute {target} stored ({len(outcome.raw)} bytes)")


# Global instance
scheduler_service = SchedulerService()
