"""Dispatcher turning trigger signals into profile captures."""

import asyncio
import signal
from collections.abc import AsyncIterator, Callable, Iterable
from functools import partial
from types import FrameType, MappingProxyType

import structlog

from sigprof.config import Config
from sigprof.profiler import CaptureKind, CaptureRequest, CaptureResult, Profiler, RuntimeProfiler
from sigprof.runtime import ProfileError
from sigprof.sinks import FileSink, Sink, new_sink

log = structlog.get_logger()

TRIGGER_SIGNALS = (signal.SIGUSR1, signal.SIGUSR2)

SinkFactory = Callable[[str, str], Sink]
SourceFactory = Callable[[], AsyncIterator[signal.Signals]]


class SignalSource:
    """Async iterator over received trigger signals.

    open() installs handlers with signal.signal(), so it and close() must run
    in the main thread. Handlers forward each signal to loop, which may run in
    any thread. Iteration ends after close().
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        signals: Iterable[signal.Signals] = TRIGGER_SIGNALS,
    ):
        self._loop = loop
        self._signals = tuple(signals)
        self._queue: asyncio.Queue[signal.Signals | None] = asyncio.Queue()
        self._previous: dict[signal.Signals, object] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self) -> None:
        """Install handlers for the trigger signals."""
        for sig in self._signals:
            self._previous[sig] = signal.signal(sig, self._handle)

    def close(self) -> None:
        """Restore previous handlers and end iteration."""
        if self._closed:
            return
        self._closed = True
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()
        if not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    def _handle(self, signum: int, frame: FrameType | None) -> None:
        if self._closed or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, signal.Signals(signum))

    def __aiter__(self) -> "SignalSource":
        return self

    async def __anext__(self) -> signal.Signals:
        sig = await self._queue.get()
        if sig is None:
            raise StopAsyncIteration
        return sig


class Dispatcher:
    """Captures the configured profiles whenever a trigger signal arrives.

    Signals are handled one at a time. For each profile in the signal's list,
    in order, a sink is created and the profiler writes into it. Capture
    failures are logged and never stop the loop.

    Args:
        config: Profile lists, output mode and cpu duration, read once
        sink_factory: (profile, output) -> Sink; new_sink by default
        profiler: Capture engine; a RuntimeProfiler by default
        source_factory: Returns the signal iterator consumed by run(); by
            default a SignalSource on the running loop, which requires run()
            to execute in the main thread
    """

    def __init__(
        self,
        config: Config,
        *,
        sink_factory: SinkFactory | None = None,
        profiler: Profiler | None = None,
        source_factory: SourceFactory | None = None,
    ):
        self.profile_map = MappingProxyType(
            {
                signal.SIGUSR1: tuple(config.signals.usr1),
                signal.SIGUSR2: tuple(config.signals.usr2),
            }
        )
        self.output = config.output.mode
        self.cpu_duration = config.cpu.duration

        self.profiler = profiler or RuntimeProfiler(heap_top=config.heap.top)
        self._sink_factory = sink_factory or partial(new_sink, directory=config.output_dir)
        self._source_factory = source_factory

    def profiles_for(self, sig: signal.Signals) -> tuple[str, ...]:
        """Profiles captured for sig, empty for signals that aren't triggers."""
        return self.profile_map.get(sig, ())

    async def run(self) -> None:
        """Handle signals until the source is exhausted."""
        if self._source_factory is not None:
            source = self._source_factory()
        else:
            source = SignalSource(asyncio.get_running_loop())
            source.open()

        log.info(
            "dispatcher_started",
            usr1=list(self.profile_map[signal.SIGUSR1]),
            usr2=list(self.profile_map[signal.SIGUSR2]),
            output=self.output,
        )
        try:
            async for sig in source:
                self.profile_signal(sig)
        finally:
            if isinstance(source, SignalSource) and self._source_factory is None:
                source.close()
            log.info("dispatcher_stopped")

    def profile_signal(self, sig: signal.Signals) -> None:
        """Capture every profile configured for sig, in order."""
        profiles = self.profiles_for(sig)
        if not profiles:
            log.debug("signal_ignored", signal=getattr(sig, "name", str(sig)))
            return

        log.info("signal_received", signal=sig.name, profiles=list(profiles))
        for name in profiles:
            try:
                sink = self._sink_factory(name, self.output)
            except Exception as e:
                log.exception("sink_factory_failed", profile=name, error=str(e))
                continue
            self.profile(name, sink)

    def profile(self, name: str, sink: Sink) -> CaptureResult | None:
        """Capture one profile into sink and settle the sink.

        Point-in-time sinks are closed here. Continuous sinks are left to the
        profiler's stop timer. Failed captures close their sink, and file sinks
        are removed as well.
        """
        request = CaptureRequest.create(name, sink, self.cpu_duration)
        try:
            result = self.profiler.write_profile(request)
        except ProfileError as e:
            log.error("profile_failed", profile=name, sink=sink.name, error=str(e))
            self._release_failed(sink, name)
            return None
        except Exception as e:
            log.exception("profile_crashed", profile=name, sink=sink.name, error=str(e))
            self._release_failed(sink, name)
            return None

        if request.kind is CaptureKind.CONTINUOUS:
            return result

        try:
            sink.close()
        except OSError as e:
            log.error("sink_close_failed", profile=name, sink=sink.name, error=str(e))
            return result
        log.info("profile_written", profile=name, sink=sink.name, bytes=result.bytes_written)
        return result

    @staticmethod
    def _release_failed(sink: Sink, name: str) -> None:
        if isinstance(sink, FileSink):
            sink.discard()
            return
        # Nothing to remove, but the sink must not stay open
        try:
            sink.close()
        except OSError as e:
            log.error("sink_close_failed", profile=name, sink=sink.name, error=str(e))
