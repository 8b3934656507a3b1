"""Import this module to install sigprof with configuration from the environment.

    import sigprof.auto  # noqa: F401

Then `kill -USR1 <pid>` captures the SIGPROF_USR1 profiles (thread stacks by
default) and `kill -USR2 <pid>` the SIGPROF_USR2 profiles (heap by default).
"""

from sigprof.activation import install

handle = install()
