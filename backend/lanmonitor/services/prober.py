"""Prober service - runs ping and traceroute and parses their output."""
import asyncio
import contextlib
import logging
import re
import shutil
from dataclasses import dataclass
from typing import List, Optional

from ..config import Settings, settings
from ..utils.time_utils import now_ms

logger = logging.getLogger(__name__)

# Example line: "64 bytes from 8.8.8.8: icmp_seq=1 ttl=117 time=14.2 ms"
TIME_PATTERN = re.compile(r"time[=<]\s*(\d+(?:\.\d+)?)\s*ms", re.IGNORECASE)
TTL_PATTERN = re.compile(r"ttl[=:]\s*(\d+)", re.IGNORECASE)
REPLY_MARKER = re.compile(r"bytes from", re.IGNORECASE)

READ_CHUNK = 64 * 1024


class ProbeUnavailableError(RuntimeError):
    """The probe binary could not be started at all."""


@dataclass(frozen=True)
class ParsedPing:
    """Fields extracted from ping output."""
    alive: bool
    time_ms: Optional[float] = None
    ttl: Optional[int] = None


@dataclass
class PingOutcome:
    """Result of one ping tick."""
    ts: int
    target: str
    alive: bool
    time_ms: Optional[float] = None
    ttl: Optional[int] = None
    raw: str = ""


@dataclass
class TraceOutcome:
    """Result of one traceroute."""
    ts: int
    target: str
    raw: str = ""


@dataclass
class BoundedOutput:
    """Captured output of a subprocess run under a time and size budget."""
    output: str
    returncode: Optional[int]
    timed_out: bool = False
    truncated: bool = False


def parse_ping_output(raw: str) -> ParsedPing:
    """Parse the output of a single-packet ping.

    A reply time or a "bytes from" line counts as reachable, whatever the
    exit status of ping was. A late reply can therefore be reported as
    alive.
    """
    time_match = TIME_PATTERN.search(raw)
    ttl_match = TTL_PATTERN.search(raw)

    time_ms = float(time_match.group(1)) if time_match else None
    ttl = int(ttl_match.group(1)) if ttl_match else None
    alive = bool(time_match) or bool(REPLY_MARKER.search(raw))

    return ParsedPing(alive=alive, time_ms=time_ms, ttl=ttl)


def _kill(proc: asyncio.subprocess.Process):
    with contextlib.suppress(ProcessLookupError):
        proc.kill()


async def run_bounded(argv: List[str], timeout: float, max_bytes: int) -> BoundedOutput:
    """Run `argv` with stdout and stderr merged, bounded in time and size.

    Output past `max_bytes` is dropped and the process killed. When
    `timeout` expires the process is killed and the output captured so far
    is returned.

    Raises:
        ProbeUnavailableError: the executable is missing or not runnable
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise ProbeUnavailableError(f"Cannot run {argv[0]}: {e}") from e

    buffer = bytearray()
    truncated = False

    async def _collect() -> int:
        nonlocal truncated
        while True:
            chunk = await proc.stdout.read(READ_CHUNK)
            if not chunk:
                break
            room = max_bytes - len(buffer)
            if len(chunk) > room:
                buffer.extend(chunk[:room])
                truncated = True
                _kill(proc)
                break
            buffer.extend(chunk)
        return await proc.wait()

    try:
        returncode = await asyncio.wait_for(_collect(), timeout=timeout)
        timed_out = False
    except asyncio.TimeoutError:
        _kill(proc)
        returncode = await proc.wait()
        timed_out = True

    return BoundedOutput(
        output=buffer.decode("utf-8", errors="replace"),
        returncode=returncode,
        timed_out=timed_out,
        truncated=truncated,
    )


class ProberService:
    """Runs ping and traceroute against one target at a time."""

    def __init__(self, cfg: Settings = settings):
        self.settings = cfg

    def ping_command(self, target: str) -> List[str]:
        return ["ping", "-c", "1", "-W", str(self.settings.ping_wait_seconds), target]

    def traceroute_command(self, target: str) -> List[str]:
        return ["traceroute", "-m", str(self.settings.trace_max_hops), target]

    def verify_available(self):
        """Fail fast when ping or traceroute is not installed."""
        missing = [
            argv[0]
            for argv in (self.ping_command("localhost"), self.traceroute_command("localhost"))
            if shutil.which(argv[0]) is None
        ]
        if missing:
            raise ProbeUnavailableError(f"Required probe binaries not found: {', '.join(missing)}")

    async def run_ping(self, target: str, ts: Optional[int] = None) -> PingOutcome:
        """Send one ping to `target`.

        A timeout is a failure sample rather than an error, so the tick
        still leaves a record.
        """
        ts = now_ms() if ts is None else ts
        result = await run_bounded(
            self.ping_command(target),
            timeout=self.settings.ping_timeout_seconds,
            max_bytes=self.settings.ping_max_output_bytes,
        )
        raw = result.output
        if result.timed_out:
            logger.debug(f"Ping to {target} timed out after {self.settings.ping_timeout_seconds}s")
            raw += f"\n(ping timed out after {self.settings.ping_timeout_seconds}s)"

        parsed = parse_ping_output(result.output)
        return PingOutcome(
            ts=ts,
            target=target,
            alive=parsed.alive,
            time_ms=parsed.time_ms,
            ttl=parsed.ttl,
            raw=raw,
        )

    async def run_traceroute(self, target: str, ts: Optional[int] = None) -> TraceOutcome:
        """Trace the path to `target`; partial output is kept on timeout."""
        ts = now_ms() if ts is None else ts
        result = await run_bounded(
            self.traceroute_command(target),
            timeout=self.settings.trace_timeout_seconds,
            max_bytes=self.settings.trace_max_output_bytes,
        )
        raw = result.output
        if result.timed_out:
            logger.warning(f"Traceroute to {target} timed out after {self.settings.trace_timeout_seconds}s")
            raw += f"\n(traceroute timed out after {self.settings.trace_timeout_seconds}s)"
        elif result.truncated:
            logger.warning(f"Traceroute output for {target} truncated at {self.settings.trace_max_output_bytes} bytes")
        return TraceOutcome(ts=ts, target=target, raw=raw)


# Global instance
prober_service = ProberService()
