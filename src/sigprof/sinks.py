"""Write destinations for captured profiles.

Each capture gets its own sink. Stream sinks wrap the process's stdout or
stderr and never close them. File sinks own a uniquely named temporary file
that is closed once and, when the capture fails, removed.
"""

import os
import sys
import tempfile
from enum import Enum
from pathlib import Path
from typing import BinaryIO

import structlog

log = structlog.get_logger()


class OutputMode(str, Enum):
    """Recognized output modes. Unrecognized strings behave as STDERR."""

    STDOUT = "stdout"
    STDERR = "stderr"
    FILE = "file"


class Sink:
    """A write destination for exactly one capture."""

    name: str = ""

    def write(self, data: bytes) -> int:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class StreamSink(Sink):
    """Writes to sys.stdout or sys.stderr; close() is a no-op.

    The stream is resolved on every write so redirected streams are honored.
    """

    def __init__(self, stream_name: str):
        mode = OutputMode(stream_name)
        if mode is OutputMode.FILE:
            raise ValueError(f"Not a stream: {stream_name!r}")
        self.name = f"<{mode.value}>"
        self._stream_name = mode.value

    @property
    def stream_name(self) -> str:
        return self._stream_name

    def write(self, data: bytes) -> int:
        stream = getattr(sys, self._stream_name)
        buffer = getattr(stream, "buffer", None)
        if buffer is not None:
            stream.flush()
            written = buffer.write(data)
            buffer.flush()
            return written
        stream.write(data.decode("utf-8", errors="replace"))
        stream.flush()
        return len(data)

    def close(self) -> None:
        # Shared with the rest of the process
        pass

    def __repr__(self) -> str:
        return f"StreamSink({self._stream_name!r})"


class FileSink(Sink):
    """A temporary file holding one profile."""

    def __init__(self, path: Path, file: BinaryIO):
        self.path = Path(path)
        self.name = str(self.path)
        self._file = file
        self._closed = False

    @classmethod
    def create(cls, profile: str, directory: Path | None = None) -> "FileSink":
        """Create <binary>.<profile>.prof.<suffix> in directory or the temp dir.

        Raises:
            OSError: If the file can't be created.
        """
        prefix = f"{binary_name()}.{profile}.prof."
        fd, path = tempfile.mkstemp(prefix=prefix, dir=directory)
        return cls(Path(path), os.fdopen(fd, "wb"))

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: bytes) -> int:
        return self._file.write(data)

    def close(self) -> None:
        """Close the file. Later calls do nothing."""
        if self._closed:
            return
        self._closed = True
        self._file.close()

    def discard(self) -> None:
        """Close and remove the file, logging cleanup errors."""
        try:
            self.close()
        except OSError as e:
            log.warning("sink_close_failed", path=self.name, error=str(e))
        try:
            self.path.unlink()
        except OSError as e:
            log.warning("sink_remove_failed", path=self.name, error=str(e))

    def __repr__(self) -> str:
        return f"FileSink({self.name!r})"


def binary_name() -> str:
    """Basename of the running program, used in profile file names."""
    return Path(sys.argv[0]).name if sys.argv and sys.argv[0] else "python"


def new_sink(profile: str, output: str, directory: Path | None = None) -> Sink:
    """Return the sink a profile should be written to.

    File creation failures degrade to the stderr sink so the capture still
    happens.
    """
    if output == OutputMode.FILE:
        try:
            sink = FileSink.create(profile, directory)
        except OSError as e:
            log.error("sink_create_failed", profile=profile, error=str(e))
            return StreamSink(OutputMode.STDERR)
        log.info("profile_file_created", profile=profile, path=sink.name)
        return sink
    if output == OutputMode.STDOUT:
        return StreamSink(OutputMode.STDOUT)
    return StreamSink(OutputMode.STDERR)
