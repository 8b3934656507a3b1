"""Signal-triggered profiling for running Python processes."""

from sigprof.activation import SigprofHandle, active, install
from sigprof.runtime import register

__all__ = ["SigprofHandle", "active", "install", "register"]
