"""Profiling runtime: named point-in-time profiles and the cpu profile slot.

Point-in-time profiles are looked up by name and rendered synchronously as
text, each starting with a "<name> profile:" header line. The cpu profile is
continuous: cProfile is enabled process-wide between start_cpu_profile() and
stop_cpu_profile(), and only one such profile may run at a time.
"""

from __future__ import annotations

import cProfile
import gc
import marshal
import sys
import threading
import traceback
import tracemalloc
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import psutil

if TYPE_CHECKING:
    from sigprof.sinks import Sink

CPU_PROFILE = "cpu"


class ProfileError(Exception):
    """A single capture failed."""


class UnknownProfileError(ProfileError):
    """No profile is registered under the requested name."""


class ProfilerBusyError(ProfileError):
    """A cpu profile is already running in this process."""


class ProfileWriteError(ProfileError):
    """Rendering a profile into its sink failed."""


@dataclass(frozen=True)
class Profile:
    """A named point-in-time profile.

    render(limit) returns the profile text; limit caps the number of ranked
    entries for profiles that rank things (heap) and is ignored otherwise.
    """

    name: str
    render: Callable[[int], str]

    def write_to(self, sink: Sink, limit: int = 25) -> int:
        """Render the profile into sink, returning the number of bytes written."""
        return sink.write(self.render(limit).encode("utf-8"))


# --- Built-in profiles ---


def _render_threads(limit: int) -> str:
    frames = sys._current_frames()
    threads = {t.ident: t for t in threading.enumerate()}
    lines = [f"threads profile: total {len(frames)}", ""]
    for ident, frame in frames.items():
        thread = threads.get(ident)
        name = thread.name if thread is not None else "<unknown>"
        daemon = " daemon" if thread is not None and thread.daemon else ""
        lines.append(f"thread {ident} [{name}]{daemon}:")
        lines.append("".join(traceback.format_stack(frame)).rstrip("\n"))
        lines.append("")
    return "\n".join(lines) + "\n"


def _render_heap(limit: int) -> str:
    if tracemalloc.is_tracing():
        snapshot = tracemalloc.take_snapshot().filter_traces(
            (tracemalloc.Filter(False, tracemalloc.__file__),)
        )
        stats = snapshot.statistics("traceback")
        total_size = sum(stat.size for stat in stats)
        total_count = sum(stat.count for stat in stats)
        lines = [
            f"heap profile: {total_size} bytes in {total_count} blocks "
            f"[tracemalloc, {tracemalloc.get_traceback_limit()} frames]",
            "",
        ]
        for stat in stats[:limit]:
            lines.append(f"{stat.size} bytes in {stat.count} blocks @")
            lines.extend(stat.traceback.format())
            lines.append("")
        return "\n".join(lines) + "\n"

    counts = Counter(type(obj).__qualname__ for obj in gc.get_objects())
    lines = [
        f"heap profile: {sum(counts.values())} tracked objects "
        "[gc census, tracemalloc not tracing]",
        "",
    ]
    for name, count in counts.most_common(limit):
        lines.append(f"{count:>10}  {name}")
    return "\n".join(lines) + "\n"


def _render_gc(limit: int) -> str:
    lines = [
        f"gc profile: enabled={gc.isenabled()}",
        f"counts: {gc.get_count()}",
        f"thresholds: {gc.get_threshold()}",
        f"garbage: {len(gc.garbage)}",
        "",
    ]
    for generation, stats in enumerate(gc.get_stats()):
        lines.append(
            f"generation {generation}: collections={stats['collections']} "
            f"collected={stats['collected']} uncollectable={stats['uncollectable']}"
        )
    return "\n".join(lines) + "\n"


def _render_process(limit: int) -> str:
    proc = psutil.Process()
    with proc.oneshot():
        mem = proc.memory_info()
        cpu = proc.cpu_times()
        lines = [
            f"process profile: pid {proc.pid}",
            f"cmdline: {' '.join(proc.cmdline())}",
            f"rss: {mem.rss}",
            f"vms: {mem.vms}",
            f"cpu_user: {cpu.user:.3f}s",
            f"cpu_system: {cpu.system:.3f}s",
            f"threads: {proc.num_threads()}",
        ]
        try:
            open_files = proc.open_files()
            lines.append(f"open_files: {len(open_files)}")
            lines.extend(f"  {f.path}" for f in open_files[:limit])
        except psutil.AccessDenied:
            lines.append("open_files: <access denied>")
    return "\n".join(lines) + "\n"


_profiles: dict[str, Profile] = {
    "threads": Profile("threads", _render_threads),
    "heap": Profile("heap", _render_heap),
    "gc": Profile("gc", _render_gc),
    "process": Profile("process", _render_process),
}


def lookup(name: str) -> Profile | None:
    """Return the point-in-time profile registered under name, or None."""
    return _profiles.get(name)


def register(name: str, render: Callable[[int], str]) -> Profile:
    """Register a custom point-in-time profile.

    Raises:
        ValueError: If name is empty, reserved, or already registered.
    """
    if not name or name == CPU_PROFILE:
        raise ValueError(f"Invalid profile name: {name!r}")
    if name in _profiles:
        raise ValueError(f"Profile already registered: {name!r}")
    profile = Profile(name, render)
    _profiles[name] = profile
    return profile


def unregister(name: str) -> None:
    """Remove a custom profile. Unknown names are ignored."""
    _profiles.pop(name, None)


def profile_names() -> list[str]:
    """Names of registered point-in-time profiles, sorted."""
    return sorted(_profiles)


# --- Continuous cpu profile ---

_cpu_lock = threading.Lock()
_cpu_profile: cProfile.Profile | None = None


def start_cpu_profile() -> None:
    """Enable process-wide cpu profiling.

    Raises:
        ProfilerBusyError: If a cpu profile is already running, or the
            interpreter refuses another profiling tool.
    """
    global _cpu_profile
    with _cpu_lock:
        if _cpu_profile is not None:
            raise ProfilerBusyError("cpu profiling already in use")
        prof = cProfile.Profile()
        try:
            prof.enable()
        except ValueError as e:
            raise ProfilerBusyError(f"cpu profiling unavailable: {e}") from e
        _cpu_profile = prof


def stop_cpu_profile() -> bytes:
    """Disable cpu profiling and return the stats in pstats marshal format.

    Returns b"" if no cpu profile was running.
    """
    global _cpu_profile
    with _cpu_lock:
        prof, _cpu_profile = _cpu_profile, None
        if prof is None:
            return b""
        prof.disable()
    prof.create_stats()
    return marshal.dumps(prof.stats)


def cpu_profile_active() -> bool:
    """Whether a cpu profile is currently running."""
    return _cpu_profile is not None
