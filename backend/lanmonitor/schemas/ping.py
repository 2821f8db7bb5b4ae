"""Ping, traceroute and aggregate schemas for the dashboard API."""
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class ProbeSampleOut(BaseModel):
    """Stored ping result."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    ts: int  # epoch ms
    target: str
    alive: bool
    time_ms: Optional[float] = None
    ttl: Optional[int] = None
    raw: Optional[str] = None


class TraceSampleOut(BaseModel):
    """Stored traceroute output."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    ts: int
    target: str
    raw: Optional[str] = None


class PingsResponse(BaseModel):
    ok: bool = True
    since: int
    rows: List[ProbeSampleOut]


class StatusResponse(BaseModel):
    ok: bool = True
    targets: List[str]
    latest: Dict[str, Optional[ProbeSampleOut]]


class TraceroutesResponse(BaseModel):
    ok: bool = True
    rows: List[TraceSampleOut]


class TracerouteResponse(BaseModel):
    ok: bool = True
    row: Optional[TraceSampleOut] = None


class TimeBucketOut(BaseModel):
    """One aggregated bucket of the timeline."""
    model_config = ConfigDict(from_attributes=True)

    bucket_start: int
    total: int
    success_count: int
    success_ratio: float
    avg_ms: Optional[float] = None
    state: str  # UP, DEGRADED, DOWN, NO_DATA


class TimelineResponse(BaseModel):
    ok: bool = True
    start: int
    end: int
    bucket_ms: int
    targets: List[str]
    buckets: Dict[str, List[TimeBucketOut]]


class CorrelationRowOut(BaseModel):
    """A failure of the primary target and what the others did meanwhile."""
    ts: int
    state: str = "fail"  # the primary target always failed in these rows
    others: Dict[str, str]  # target -> success, fail, no_data


class FailuresResponse(BaseModel):
    ok: bool = True
    primary: str
    others: List[str]
    tolerance_ms: int
    rows: List[CorrelationRowOut]


class ErrorResponse(BaseModel):
    """Body of failed queries and rejected parameters."""
    ok: bool = False
    err: str
