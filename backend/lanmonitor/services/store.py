"""Probe store - append-only access to the pings and traceroutes tables."""
import asyncio
import logging
from typing import AsyncIterator, Iterable, List, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..config import settings
from ..database import async_session
from ..models import ProbeSample, TraceSample
from ..utils.db_utils import retry_on_lock
from .prober import PingOutcome, TraceOutcome

logger = logging.getLogger(__name__)

# Rows per fetch when streaming a range
BATCH_SIZE = 5000


class ProbeStore:
    """Time-series store for ping and traceroute samples.

    Every insert runs in its own session, so a failed insert never touches
    another one. Writes from this process are serialized by a lock; readers
    go straight to SQLite, which in WAL mode does not block them on the
    writer.
    """

    def __init__(self, session_factory: async_sessionmaker, max_query_rows: int = 200_000):
        self.session_factory = session_factory
        self.max_query_rows = max_query_rows
        self._write_lock = asyncio.Lock()

    async def _add(self, row):
        async with self._write_lock:
            async with self.session_factory() as session:
                session.add(row)
                await session.commit()

    async def insert_probe(self, outcome: PingOutcome) -> ProbeSample:
        """Persist one ping outcome."""
        row = ProbeSample(
            ts=outcome.ts,
            target=outcome.target,
            alive=outcome.alive,
            time_ms=outcome.time_ms,
            ttl=outcome.ttl,
            raw=outcome.raw,
        )
        await retry_on_lock(lambda: self._add(row))
        return row

    async def insert_trace(self, outcome: TraceOutcome) -> TraceSample:
        """Persist one traceroute outcome."""
        row = TraceSample(ts=outcome.ts, target=outcome.target, raw=outcome.raw)
        await retry_on_lock(lambda: self._add(row))
        return row

    def _cap(self, limit: Optional[int]) -> int:
        if limit is None or limit > self.max_query_rows:
            limit = self.max_query_rows
        return max(0, limit)

    async def probes_since(self, since_ts: int, limit: Optional[int] = None) -> List[ProbeSample]:
        """Samples with ts >= since_ts, oldest first, at most `limit` rows."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ProbeSample)
                .where(ProbeSample.ts >= since_ts)
                .order_by(ProbeSample.ts.asc(), ProbeSample.id.asc())
                .limit(self._cap(limit))
            )
            return list(result.scalars().all())

    @staticmethod
    def _between(columns, start_ts: int, end_ts: int, targets: Optional[Iterable[str]]):
        query = select(*columns).where(
            ProbeSample.ts >= start_ts,
            ProbeSample.ts < end_ts,
        )
        if targets is not None:
            query = query.where(ProbeSample.target.in_(list(targets)))
        return query.order_by(ProbeSample.ts.asc(), ProbeSample.id.asc())

    async def probes_between(
        self,
        start_ts: int,
        end_ts: int,
        targets: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
    ) -> List[ProbeSample]:
        """Samples with start_ts <= ts < end_ts, oldest first, at most `limit` rows."""
        async with self.session_factory() as session:
            result = await session.execute(
                self._between([ProbeSample], start_ts, end_ts, targets).limit(self._cap(limit))
            )
            return list(result.scalars().all())

    async def iter_probes_between(
        self,
        start_ts: int,
        end_ts: int,
        targets: Optional[Iterable[str]] = None,
        batch_size: int = BATCH_SIZE,
    ) -> AsyncIterator[List]:
        """Same range as `probes_between`, uncapped, in batches of light rows.

        Rows carry only `ts`, `target`, `alive` and `time_ms`. At most one
        batch is held in memory at a time.
        """
        columns = [ProbeSample.ts, ProbeSample.target, ProbeSample.alive, ProbeSample.time_ms]
        query = self._between(columns, start_ts, end_ts, targets)
        async with self.session_factory() as session:
            result = await session.stream(query.execution_options(yield_per=batch_size))
            async for partition in result.partitions():
                yield partition

    async def latest_probe(self, target: str) -> Optional[ProbeSample]:
        """Most recent sample for `target`, or None if it was never probed."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ProbeSample)
                .where(ProbeSample.target == target)
                .order_by(ProbeSample.ts.desc(), ProbeSample.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def latest_trace(self, target: str) -> Optional[TraceSample]:
        """Most recent traceroute of `target`, or None."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(TraceSample)
                .where(TraceSample.target == target)
                .order_by(TraceSample.ts.desc(), TraceSample.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def recent_traces(self, limit: int = 10) -> List[TraceSample]:
        """Latest traceroutes, newest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(TraceSample)
                .order_by(TraceSample.ts.desc(), TraceSample.id.desc())
                .limit(self._cap(limit))
            )
            return list(result.scalars().all())

    async def prune(self, ping_cutoff_ts: int, trace_cutoff_ts: int) -> Tuple[int, int]:
        """Delete samples older than the cutoffs. Batch use only."""
        async with self._write_lock:
            async with self.session_factory() as session:
                pings = await session.execute(
                    delete(ProbeSample).where(ProbeSample.ts < ping_cutoff_ts)
                )
                traces = await session.execute(
                    delete(TraceSample).where(TraceSample.ts < trace_cutoff_ts)
                )
                await session.commit()
        logger.info(f"Pruned {pings.rowcount} pings and {traces.rowcount} traceroutes")
        return pings.rowcount, traces.rowcount


def get_store() -> ProbeStore:
    """Dependency returning the process-wide store."""
    return probe_store


# Global instance
probe_store = ProbeStore(async_session, max_query_rows=settings.max_query_rows)
