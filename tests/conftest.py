"""Shared test fixtures for sigprof."""

import io
import signal
from collections.abc import AsyncIterator, Callable

import pytest

from sigprof import runtime
from sigprof.config import Config, CpuConfig, OutputConfig, SignalsConfig
from sigprof.profiler import CaptureRequest, CaptureResult
from sigprof.sinks import Sink


class BufferSink(Sink):
    """In-memory sink that counts close() calls."""

    def __init__(self, name: str = "buffer"):
        self.name = name
        self.buffer = io.BytesIO()
        self.close_count = 0

    def write(self, data: bytes) -> int:
        return self.buffer.write(data)

    def close(self) -> None:
        self.close_count += 1

    def getvalue(self) -> bytes:
        return self.buffer.getvalue()


class MarkerProfiler:
    """Writes "test <profile>" into every sink and records the call order."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def write_profile(self, request: CaptureRequest) -> CaptureResult:
        self.calls.append(request.profile)
        written = request.sink.write(f"test {request.profile}\n".encode())
        return CaptureResult(request.profile, request.kind, written)


class RecordingSinkFactory:
    """Sink factory handing out BufferSinks and remembering them in order."""

    def __init__(self) -> None:
        self.sinks: list[BufferSink] = []
        self.outputs: list[str] = []

    def __call__(self, profile: str, output: str) -> BufferSink:
        sink = BufferSink(profile)
        self.sinks.append(sink)
        self.outputs.append(output)
        return sink


def make_source(*signals: signal.Signals) -> Callable[[], AsyncIterator[signal.Signals]]:
    """Source factory yielding the given signals, then ending."""

    async def source() -> AsyncIterator[signal.Signals]:
        for sig in signals:
            yield sig

    return source


def make_config(
    usr1: list[str] | None = None,
    usr2: list[str] | None = None,
    mode: str = "file",
    directory: str = "",
    cpu_duration: float = 30.0,
) -> Config:
    """Create a Config for testing without touching the user's config file."""
    return Config(
        signals=SignalsConfig(
            usr1=usr1 if usr1 is not None else ["threads"],
            usr2=usr2 if usr2 is not None else ["heap"],
        ),
        output=OutputConfig(mode=mode, directory=directory),
        cpu=CpuConfig(duration=cpu_duration),
    )


@pytest.fixture
def recording_sinks() -> RecordingSinkFactory:
    return RecordingSinkFactory()


@pytest.fixture(autouse=True)
def no_leftover_cpu_profile():
    """Fail loudly if a test leaves the cpu profile slot taken."""
    yield
    if runtime.cpu_profile_active():
        runtime.stop_cpu_profile()
        pytest.fail("test left a cpu profile running")
