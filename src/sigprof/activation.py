"""Opt-in activation: run a Dispatcher on a background thread."""

import asyncio
import threading
import tracemalloc

import structlog

from sigprof.config import Config
from sigprof.dispatcher import Dispatcher, SignalSource
from sigprof.profiler import Profiler

log = structlog.get_logger()

_lock = threading.Lock()
_active: "SigprofHandle | None" = None


class SigprofHandle:
    """Handle returned by install()."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        source: SignalSource,
        thread: threading.Thread,
    ):
        self.dispatcher = dispatcher
        self._source = source
        self._thread = thread

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def stop(self, wait: bool = False, timeout: float | None = None) -> None:
        """Restore signal handlers and end the dispatcher thread.

        Must be called from the main thread. With wait, also waits for a cpu
        profile that is still collecting to be written and closed.
        """
        global _active
        self._source.close()
        self._thread.join(timeout)
        wait_for_cpu = getattr(self.dispatcher.profiler, "wait", None)
        if wait and wait_for_cpu is not None:
            wait_for_cpu(timeout)
        with _lock:
            if _active is self:
                _active = None
        log.info("sigprof_stopped")


def _run(loop: asyncio.AbstractEventLoop, dispatcher: Dispatcher) -> None:
    asyncio.set_event_loop(loop)
    try:
        loop.run_until_complete(dispatcher.run())
    except Exception as e:
        log.exception("dispatcher_crashed", error=str(e))
    finally:
        loop.close()


def install(config: Config | None = None, *, profiler: Profiler | None = None) -> SigprofHandle:
    """Start handling SIGUSR1/SIGUSR2 in this process.

    Args:
        config: Configuration; Config.from_env() if not provided
        profiler: Capture engine override

    Raises:
        RuntimeError: If not called from the main thread, or already installed.
    """
    global _active
    if threading.current_thread() is not threading.main_thread():
        raise RuntimeError("sigprof.install() must be called from the main thread")

    with _lock:
        if _active is not None:
            raise RuntimeError("sigprof is already installed")

        if config is None:
            config = Config.from_env()

        frames = config.heap.tracemalloc_frames
        if frames > 0 and not tracemalloc.is_tracing():
            tracemalloc.start(frames)
            log.info("tracemalloc_started", frames=frames)

        loop = asyncio.new_event_loop()
        source = SignalSource(loop)
        dispatcher = Dispatcher(config, profiler=profiler, source_factory=lambda: source)
        thread = threading.Thread(
            target=_run,
            args=(loop, dispatcher),
            name="sigprof",
            daemon=True,
        )

        source.open()
        thread.start()

        _active = SigprofHandle(dispatcher, source, thread)
        log.info("sigprof_installed", output=config.output.mode, cpu_duration=config.cpu.duration)
        return _active


def active() -> SigprofHandle | None:
    """The handle of the current installation, if any."""
    return _active
