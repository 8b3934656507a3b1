"""Profile engine: renders one capture request into its sink."""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import structlog

from sigprof import runtime
from sigprof.runtime import CPU_PROFILE, ProfileWriteError, UnknownProfileError
from sigprof.sinks import FileSink, Sink

log = structlog.get_logger()


class CaptureKind(Enum):
    """How a profile is captured."""

    POINT_IN_TIME = "point_in_time"  # Rendered synchronously in one call
    CONTINUOUS = "continuous"  # Started now, stopped after a duration


@dataclass(frozen=True)
class CaptureRequest:
    """One profile to capture into one sink."""

    profile: str
    sink: Sink
    kind: CaptureKind = CaptureKind.POINT_IN_TIME
    duration: float | None = None  # Seconds, CONTINUOUS only

    @classmethod
    def create(cls, profile: str, sink: Sink, cpu_duration: float) -> "CaptureRequest":
        """Build the request for profile, tagging the cpu profile as continuous."""
        if profile == CPU_PROFILE:
            return cls(profile, sink, CaptureKind.CONTINUOUS, cpu_duration)
        return cls(profile, sink)


@dataclass(frozen=True)
class CaptureResult:
    """Outcome of a successful capture.

    bytes_written is None for continuous captures, which are still running
    when the result is returned.
    """

    profile: str
    kind: CaptureKind
    bytes_written: int | None = None


class Profiler(Protocol):
    """Anything that can capture a profile request."""

    def write_profile(self, request: CaptureRequest) -> CaptureResult: ...


class RuntimeProfiler:
    """Captures profiles from sigprof.runtime.

    Point-in-time profiles are rendered before write_profile() returns. The cpu
    profile is started and a timer thread stops it after request.duration,
    writes the stats, and closes the sink.
    """

    def __init__(self, heap_top: int = 25):
        self.heap_top = heap_top
        self._timers: list[threading.Timer] = []
        self._timers_lock = threading.Lock()

    def write_profile(self, request: CaptureRequest) -> CaptureResult:
        """Capture request.profile into request.sink.

        Raises:
            UnknownProfileError: No point-in-time profile has that name.
            ProfilerBusyError: A cpu profile is already running.
            ProfileWriteError: Writing to the sink failed.
        """
        if request.kind is CaptureKind.CONTINUOUS:
            return self._start_cpu_profile(request)

        profile = runtime.lookup(request.profile)
        if profile is None:
            raise UnknownProfileError(f"failed to lookup profile {request.profile!r}")
        try:
            written = profile.write_to(request.sink, self.heap_top)
        except OSError as e:
            raise ProfileWriteError(f"failed to write {request.profile} profile: {e}") from e
        return CaptureResult(request.profile, request.kind, written)

    def _start_cpu_profile(self, request: CaptureRequest) -> CaptureResult:
        runtime.start_cpu_profile()
        duration = request.duration or 0.0
        timer = threading.Timer(duration, self._stop_cpu_profile, args=(request,))
        timer.name = f"sigprof-cpu-{request.profile}"
        timer.daemon = True
        with self._timers_lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()
        log.info("cpu_profile_started", sink=request.sink.name, duration=duration)
        return CaptureResult(request.profile, request.kind)

    def _stop_cpu_profile(self, request: CaptureRequest) -> None:
        data = runtime.stop_cpu_profile()
        try:
            request.sink.write(data)
        except OSError as e:
            log.error("cpu_profile_write_failed", sink=request.sink.name, error=str(e))
            if isinstance(request.sink, FileSink):
                request.sink.discard()
                return
        try:
            request.sink.close()
        except OSError as e:
            log.error("sink_close_failed", sink=request.sink.name, error=str(e))
            return
        log.info("cpu_profile_complete", sink=request.sink.name, bytes=len(data))

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for scheduled cpu profile stops. Returns False on timeout."""
        with self._timers_lock:
            timers = list(self._timers)
        for timer in timers:
            timer.join(timeout)
            if timer.is_alive():
                return False
        return True
