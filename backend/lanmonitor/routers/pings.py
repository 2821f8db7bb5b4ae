"""Read-only dashboard API: raw pings, latest status, traceroutes and aggregates.

Query failures are reported in the body as {"ok": false, "err": ...}; the
dashboard looks at `ok`, not at the HTTP status.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ..config import Settings, get_settings
from ..schemas.ping import (
    CorrelationRowOut,
    ErrorResponse,
    FailuresResponse,
    PingsResponse,
    ProbeSampleOut,
    StatusResponse,
    TimeBucketOut,
    TimelineResponse,
    TraceSampleOut,
    TraceroutesResponse,
    TracerouteResponse,
)
from ..services.aggregation import BucketAggregator, bucket_count, timeline
from ..services.correlation import FailureCorrelator
from ..services.store import ProbeStore, get_store
from ..utils.time_utils import now_ms

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["pings"],
    responses={400: {"model": ErrorResponse, "description": "Malformed query parameters"}},
)

HOUR_MS = 60 * 60 * 1000
MIN_WINDOW_HOURS = 1.0
MAX_WINDOW_HOURS = 24 * 366


def query_error(exc: Exception) -> JSONResponse:
    """Body-level error response for a failed query."""
    return JSONResponse({"ok": False, "err": str(exc)})


def window_since(hours: float, now: int) -> int:
    """Start of a look-back window of `hours`, never shorter than one hour."""
    return now - int(max(MIN_WINDOW_HOURS, hours) * HOUR_MS)


@router.get("/pings", response_model=PingsResponse)
async def get_pings(
    hours: float = Query(24.0, le=MAX_WINDOW_HOURS, allow_inf_nan=False),
    limit: int = Query(200_000, ge=0),
    store: ProbeStore = Depends(get_store),
):
    """Raw ping samples of the last `hours`, oldest first."""
    since = window_since(hours, now_ms())
    try:
        rows = await store.probes_since(since, limit)
    except Exception as e:
        logger.error(f"Error querying pings since {since}: {e}")
        return query_error(e)

    return PingsResponse(
        since=since,
        rows=[ProbeSampleOut.model_validate(row) for row in rows],
    )


@router.get("/status", response_model=StatusResponse)
async def get_status(
    store: ProbeStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
):
    """Latest sample of every configured target, null when never probed."""
    latest = {}
    try:
        for target in cfg.targets:
            row = await store.latest_probe(target)
            latest[target] = ProbeSampleOut.model_validate(row) if row else None
    except Exception as e:
        logger.error(f"Error querying latest status: {e}")
        return query_error(e)

    return StatusResponse(targets=list(cfg.targets), latest=latest)


@router.get("/traceroutes", response_model=TraceroutesResponse)
async def get_traceroutes(
    limit: int = Query(10, ge=0),
    store: ProbeStore = Depends(get_store),
):
    """Most recent traceroutes, newest first."""
    try:
        rows = await store.recent_traces(limit)
    except Exception as e:
        logger.error(f"Error querying traceroutes: {e}")
        return query_error(e)

    return TraceroutesResponse(rows=[TraceSampleOut.model_validate(row) for row in rows])


@router.get("/traceroute", response_model=TracerouteResponse)
async def get_latest_traceroute(
    target: str = Query(..., min_length=1),
    store: ProbeStore = Depends(get_store),
):
    """Latest traceroute of one target, null when none was recorded."""
    try:
        row = await store.latest_trace(target)
    except Exception as e:
        logger.error(f"Error querying traceroute of {target}: {e}")
        return query_error(e)

    return TracerouteResponse(row=TraceSampleOut.model_validate(row) if row else None)


@router.get("/timeline", response_model=TimelineResponse)
async def get_timeline(
    hours: float = Query(12.0, le=MAX_WINDOW_HOURS, allow_inf_nan=False),
    bucket_seconds: int = Query(60, ge=1, le=24 * 60 * 60),
    store: ProbeStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
):
    """Per-target health buckets over the last `hours`."""
    end = now_ms()
    start = window_since(hours, end)
    bucket_ms = bucket_seconds * 1000

    requested = bucket_count(start, end + 1, bucket_ms) * len(cfg.targets)
    if requested > cfg.max_timeline_buckets:
        return query_error(ValueError(
            f"Timeline of {requested} buckets exceeds the limit of {cfg.max_timeline_buckets}; "
            "use a shorter window or wider buckets"
        ))

    aggregator = BucketAggregator(start, end + 1, bucket_ms, cfg.targets)
    try:
        async for batch in store.iter_probes_between(start, end + 1, cfg.targets):
            aggregator.add_all(batch)
    except Exception as e:
        logger.error(f"Error querying timeline since {start}: {e}")
        return query_error(e)

    grouped = timeline(aggregator.buckets(), cfg.targets)
    return TimelineResponse(
        start=start,
        end=end,
        bucket_ms=bucket_ms,
        targets=list(cfg.targets),
        buckets={
            target: [
                TimeBucketOut(
                    bucket_start=b.bucket_start,
                    total=b.total,
                    success_count=b.success_count,
                    success_ratio=b.success_ratio,
                    avg_ms=b.avg_ms,
                    state=b.state.value,
                )
                for b in buckets
            ]
            for target, buckets in grouped.items()
        },
    )


@router.get("/failures", response_model=FailuresResponse)
async def get_failures(
    hours: float = Query(24.0, le=MAX_WINDOW_HOURS, allow_inf_nan=False),
    primary: Optional[str] = Query(None),
    tolerance_ms: Optional[int] = Query(None, ge=0),
    store: ProbeStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
):
    """Failures of the primary target correlated with the other targets."""
    primary = primary or cfg.correlation_primary
    if primary not in cfg.targets:
        return query_error(ValueError(f"Unknown target: {primary}"))
    tolerance = cfg.correlation_tolerance_ms if tolerance_ms is None else tolerance_ms
    if tolerance > cfg.max_correlation_tolerance_ms:
        return query_error(ValueError(
            f"tolerance_ms must not exceed {cfg.max_correlation_tolerance_ms}"
        ))
    others = cfg.other_targets(primary)

    end = now_ms()
    start = window_since(hours, end)
    correlator = FailureCorrelator(
        primary, others, start, end + 1, tolerance, max_rows=cfg.max_query_rows
    )
    try:
        async for batch in store.iter_probes_between(start - tolerance, end + tolerance + 1, cfg.targets):
            correlator.add_all(batch)
    except Exception as e:
        logger.error(f"Error querying failures of {primary}: {e}")
        return query_error(e)

    rows = correlator.finish()
    return FailuresResponse(
        primary=primary,
        others=list(others),
        tolerance_ms=tolerance,
        rows=[
            CorrelationRowOut(
                ts=row.ts,
                others={target: state.value for target, state in row.others.items()},
            )
            for row in rows
        ],
    )
