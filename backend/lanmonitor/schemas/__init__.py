"""Pydantic schemas for API responses."""
from .ping import (
    ProbeSampleOut,
    TraceSampleOut,
    PingsResponse,
    StatusResponse,
    TraceroutesResponse,
    TracerouteResponse,
    TimeBucketOut,
    TimelineResponse,
    CorrelationRowOut,
    FailuresResponse,
    ErrorResponse,
)

__all__ = [
    "ProbeSampleOut",
    "TraceSampleOut",
    "PingsResponse",
    "StatusResponse",
    "TraceroutesResponse",
    "TracerouteResponse",
    "TimeBucketOut",
    "TimelineResponse",
    "CorrelationRowOut",
    "FailuresResponse",
    "ErrorResponse",
]
