from __future__ import annotations

import pytest

from lanmonitor.config import Settings
from lanmonitor.database import create_session_factory, create_sqlite_engine, init_db
from lanmonitor.services.prober import PingOutcome
from lanmonitor.services.store import ProbeStore

TARGETS = ("A", "B", "C")


def ping(ts: int, target: str, alive: bool, time_ms: float | None = None) -> PingOutcome:
    return PingOutcome(ts=ts, target=target, alive=alive, time_ms=time_ms, raw="")


@pytest.fixture
def cfg() -> Settings:
    return Settings(
        _env_file=None,
        targets=TARGETS,
        correlation_primary="A",
        correlation_tolerance_ms=1500,
    )


@pytest.fixture
async def store(tmp_path):
    engine = create_sqlite_engine(f"sqlite+aiosqlite:///{tmp_path / 'monitor.db'}")
    await init_db(engine)
    yield ProbeStore(create_session_factory(engine), max_query_rows=1000)
    await engine.dispose()
