"""Tests for configuration system."""

import pytest

from sigprof.config import (
    Config,
    CpuConfig,
    HeapConfig,
    OutputConfig,
    SignalsConfig,
    split_profiles,
)


def test_signals_config_defaults():
    """SignalsConfig captures thread stacks on USR1 and the heap on USR2."""
    config = SignalsConfig()
    assert config.usr1 == ["threads"]
    assert config.usr2 == ["heap"]


def test_output_and_cpu_defaults():
    """Output defaults to file mode in the temp dir, cpu profiles run 30s."""
    assert OutputConfig().mode == "file"
    assert OutputConfig().directory == ""
    assert CpuConfig().duration == 30.0


def test_heap_config_defaults():
    """HeapConfig leaves tracemalloc alone by default."""
    config = HeapConfig()
    assert config.tracemalloc_frames == 0
    assert config.top == 25


def test_config_paths():
    """Config provides sigprof-specific paths."""
    config = Config()
    assert "sigprof" in str(config.config_dir)
    assert config.config_path.name == "config.toml"
    assert config.log_path.name == "sigprof.log"
    assert config.output_dir is None


def test_output_dir_from_directory(tmp_path):
    """output_dir is a Path when a directory is configured."""
    config = Config(output=OutputConfig(directory=str(tmp_path)))
    assert config.output_dir == tmp_path


def test_signal_lists_are_independent():
    """Default lists are not shared between instances."""
    a = Config()
    b = Config()
    a.signals.usr1.append("gc")
    assert b.signals.usr1 == ["threads"]


@pytest.mark.parametrize(
    "value,expected",
    [
        ("heap", ["heap"]),
        ("threads,heap", ["threads", "heap"]),
        (" threads , heap ,threads", ["threads", "heap", "threads"]),
        ("heap,,gc,", ["heap", "gc"]),
        ("", []),
    ],
)
def test_split_profiles(value, expected):
    """split_profiles keeps order and duplicates, drops empty entries."""
    assert split_profiles(value) == expected


def test_config_save_and_load(tmp_path):
    """Values written by Config.save() are read back by Config.load()."""
    config_path = tmp_path / "config.toml"
    config = Config()
    config.signals.usr1 = ["threads", "gc"]
    config.output.mode = "stderr"
    config.cpu.duration = 5.0
    config.save(config_path)

    content = config_path.read_text()
    assert "[signals]" in content
    assert 'mode = "stderr"' in content

    loaded = Config.load(config_path)
    assert loaded.signals.usr1 == ["threads", "gc"]
    assert loaded.signals.usr2 == ["heap"]
    assert loaded.output.mode == "stderr"
    assert loaded.cpu.duration == 5.0


def test_config_load_reads_values(tmp_path):
    """Config.load() reads values from file, keeping defaults for the rest."""
    config_path = tmp_path / "config.toml"
    config_path.write_text("""
[signals]
usr1 = "threads,process"

[output]
mode = "stdout"

[cpu]
duration = 10

[heap]
tracemalloc_frames = 5
""")

    config = Config.load(config_path)
    assert config.signals.usr1 == ["threads", "process"]
    assert config.signals.usr2 == ["heap"]  # Default preserved
    assert config.output.mode == "stdout"
    assert config.cpu.duration == 10.0
    assert config.heap.tracemalloc_frames == 5
    assert config.heap.top == 25


def test_config_load_missing_file_returns_defaults(tmp_path):
    """Config.load() returns defaults when file doesn't exist."""
    config = Config.load(tmp_path / "nonexistent.toml")
    assert config == Config()


def test_config_load_invalid_toml(tmp_path):
    """Malformed TOML is reported as ValueError."""
    config_path = tmp_path / "config.toml"
    config_path.write_text("[signals\nusr1 = ")
    with pytest.raises(ValueError, match="Failed to parse"):
        Config.load(config_path)


def test_config_load_rejects_negative_duration(tmp_path):
    """A negative cpu duration is rejected at load time."""
    config_path = tmp_path / "config.toml"
    config_path.write_text("[cpu]\nduration = -1\n")
    with pytest.raises(ValueError, match="duration"):
        Config.load(config_path)


def test_config_load_rejects_bad_heap_top(tmp_path):
    """heap.top must be positive."""
    config_path = tmp_path / "config.toml"
    config_path.write_text("[heap]\ntop = 0\n")
    with pytest.raises(ValueError, match="top"):
        Config.load(config_path)


class TestFromEnv:
    """Tests for Config.from_env()."""

    def test_overlays_environment(self):
        """SIGPROF_* variables override the base config."""
        env = {
            "SIGPROF_USR1": "foo,bar",
            "SIGPROF_USR2": "baz",
            "SIGPROF_OUT": "stdout",
            "SIGPROF_DIR": "/var/tmp",
            "SIGPROF_CPU_DURATION": "2.5",
        }
        config = Config.from_env(env, base=Config())
        assert config.signals.usr1 == ["foo", "bar"]
        assert config.signals.usr2 == ["baz"]
        assert config.output.mode == "stdout"
        assert config.output.directory == "/var/tmp"
        assert config.cpu.duration == 2.5

    def test_empty_variables_are_unset(self):
        """Empty variables leave the base values alone."""
        env = {"SIGPROF_USR1": "", "SIGPROF_OUT": ""}
        config = Config.from_env(env, base=Config())
        assert config.signals.usr1 == ["threads"]
        assert config.output.mode == "file"

    def test_unrecognized_mode_is_kept(self):
        """Unknown output modes pass through; the sink factory handles them."""
        config = Config.from_env({"SIGPROF_OUT": "orange"}, base=Config())
        assert config.output.mode == "orange"

    @pytest.mark.parametrize("value", ["soon", "-3"])
    def test_invalid_duration(self, value):
        """Unparseable or negative durations raise ValueError."""
        with pytest.raises(ValueError, match="SIGPROF_CPU_DURATION"):
            Config.from_env({"SIGPROF_CPU_DURATION": value}, base=Config())

    def test_loads_file_when_no_base(self, tmp_path):
        """Without a base, the config file is loaded first."""
        config_path = tmp_path / "config.toml"
        config_path.write_text('[output]\nmode = "stderr"\n')
        with pytest.MonkeyPatch.context() as mp:
            mp.setattr(Config, "config_path", property(lambda self: config_path))
            config = Config.from_env({"SIGPROF_USR2": "gc"})
        assert config.output.mode == "stderr"
        assert config.signals.usr2 == ["gc"]
