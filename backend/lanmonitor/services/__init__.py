"""Services for probing, scheduling, storage, aggregation and reporting."""
from .prober import ProberService
from .scheduler import SchedulerService
from .store import ProbeStore

__all__ = ["ProberService", "SchedulerService", "ProbeStore"]
