"""Configuration system for sigprof."""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit


@dataclass
class SignalsConfig:
    """Profiles captured for each trigger signal, in capture order."""

    usr1: list[str] = field(default_factory=lambda: ["threads"])  # All thread stacks
    usr2: list[str] = field(default_factory=lambda: ["heap"])  # Heap snapshot


@dataclass
class OutputConfig:
    """Where captured profiles are written.

    mode is one of "file", "stdout" or "stderr". Anything else is treated as
    "stderr" by the sink factory. An empty directory means the system temp dir.
    """

    mode: str = "file"
    directory: str = ""


@dataclass
class CpuConfig:
    """Continuous cpu profile configuration."""

    duration: float = 30.0  # Seconds between start and stop


@dataclass
class HeapConfig:
    """Heap profile configuration."""

    tracemalloc_frames: int = 0  # Start tracemalloc on install with this many frames (0 = don't)
    top: int = 25  # Allocation sites / types listed in the heap profile


@dataclass
class LoggingConfig:
    """JSON log file rotation."""

    max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


def split_profiles(value: str) -> list[str]:
    """Split a comma-separated profile list, dropping empty entries."""
    return [name.strip() for name in value.split(",") if name.strip()]


@dataclass
class Config:
    """Main configuration container."""

    signals: SignalsConfig = field(default_factory=SignalsConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    cpu: CpuConfig = field(default_factory=CpuConfig)
    heap: HeapConfig = field(default_factory=HeapConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "sigprof"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "sigprof"

    @property
    def log_path(self) -> Path:
        """JSON Lines log path."""
        return self.state_dir / "sigprof.log"

    @property
    def output_dir(self) -> Path | None:
        """Directory for profile files, None for the system temp dir."""
        return Path(self.output.directory) if self.output.directory else None

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ["signals", "output", "cpu", "heap", "logging"]:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions so Config() and
        Config.load() agree when no file exists.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        signals_data = data.get("signals", {})
        output_data = data.get("output", {})
        cpu_data = data.get("cpu", {})
        heap_data = data.get("heap", {})
        logging_data = data.get("logging", {})

        sig = defaults.signals
        out = defaults.output
        lg = defaults.logging

        return cls(
            signals=SignalsConfig(
                usr1=_load_profile_list(signals_data, "usr1", sig.usr1),
                usr2=_load_profile_list(signals_data, "usr2", sig.usr2),
            ),
            output=OutputConfig(
                mode=str(output_data.get("mode", out.mode)),
                directory=str(output_data.get("directory", out.directory)),
            ),
            cpu=CpuConfig(
                duration=_validate_duration(cpu_data.get("duration", defaults.cpu.duration))
            ),
            heap=_load_heap_config(heap_data),
            logging=LoggingConfig(
                max_bytes=logging_data.get("max_bytes", lg.max_bytes),
                backup_count=logging_data.get("backup_count", lg.backup_count),
            ),
        )

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        base: "Config | None" = None,
    ) -> "Config":
        """Overlay SIGPROF_* environment variables on a config.

        Empty variables are treated as unset.

        Args:
            env: Environment mapping, os.environ if not provided
            base: Config to overlay, Config.load() if not provided
        """
        env = os.environ if env is None else env
        config = base if base is not None else cls.load()

        if usr1 := env.get("SIGPROF_USR1", ""):
            config.signals.usr1 = split_profiles(usr1)
        if usr2 := env.get("SIGPROF_USR2", ""):
            config.signals.usr2 = split_profiles(usr2)
        if mode := env.get("SIGPROF_OUT", ""):
            config.output.mode = mode
        if directory := env.get("SIGPROF_DIR", ""):
            config.output.directory = directory
        if duration := env.get("SIGPROF_CPU_DURATION", ""):
            try:
                config.cpu.duration = _validate_duration(float(duration))
            except ValueError as e:
                raise ValueError(f"Invalid SIGPROF_CPU_DURATION: {duration!r}") from e

        return config


def _load_profile_list(data: Mapping, key: str, default: list[str]) -> list[str]:
    """Accept either a TOML array or a comma-separated string."""
    value = data.get(key, default)
    if isinstance(value, str):
        return split_profiles(value)
    return [str(name) for name in value]


def _validate_duration(value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"cpu duration must be a number, got {value!r}")
    if value < 0:
        raise ValueError(f"cpu duration must be >= 0, got {value}")
    return float(value)


def _load_heap_config(data: Mapping) -> HeapConfig:
    """Load heap config from TOML data."""
    defaults = HeapConfig()
    frames = data.get("tracemalloc_frames", defaults.tracemalloc_frames)
    top = data.get("top", defaults.top)

    if frames < 0:
        raise ValueError(f"tracemalloc_frames must be >= 0, got {frames}")
    if top < 1:
        raise ValueError(f"top must be >= 1, got {top}")

    return HeapConfig(tracemalloc_frames=frames, top=top)
