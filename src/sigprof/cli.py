"""CLI commands for sigprof."""

import click


@click.group()
@click.version_option()
def main() -> None:
    """Signal-triggered profiling for running Python processes."""
    pass


@main.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.argument("script", type=click.Path(exists=True, dir_okay=False))
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.option("--log-file", is_flag=True, help="Also write JSON logs to the state dir")
def run(script: str, args: tuple[str, ...], log_file: bool) -> None:
    """Run a Python script with sigprof installed."""
    import runpy
    import sys

    from sigprof.activation import install
    from sigprof.config import Config
    from sigprof.logging import configure, installed

    config = Config.from_env()
    configure(config, json_file=log_file)

    handle = install(config)
    installed(config.signals.usr1, config.signals.usr2, config.output.mode)

    saved_argv = sys.argv
    sys.argv = [script, *args]
    try:
        runpy.run_path(script, run_name="__main__")
    finally:
        sys.argv = saved_argv
        handle.stop(wait=True, timeout=config.cpu.duration + 5)


@main.command()
@click.argument("pid", type=int)
@click.option("--usr2", "use_usr2", is_flag=True, help="Send SIGUSR2 instead of SIGUSR1")
def trigger(pid: int, use_usr2: bool) -> None:
    """Send a capture trigger to a process."""
    import signal

    import psutil

    from sigprof.logging import Icon, error, signal_sent

    sig = signal.SIGUSR2 if use_usr2 else signal.SIGUSR1
    try:
        psutil.Process(pid).send_signal(sig)
    except psutil.NoSuchProcess:
        error(f"No process with PID {pid}", Icon.FAIL)
        raise SystemExit(1)
    except psutil.AccessDenied:
        error(f"Not permitted to signal PID {pid}", Icon.FAIL)
        raise SystemExit(1)

    signal_sent(sig.name, pid)


@main.command()
def profiles() -> None:
    """List profiles that can be captured."""
    from sigprof.runtime import CPU_PROFILE, profile_names

    for name in profile_names():
        click.echo(name)
    click.echo(f"{CPU_PROFILE} (continuous)")


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--sort", "sort_key", default="cumulative", help="pstats sort key")
@click.option("--limit", "-n", default=25, help="Number of functions to show")
def show(path: str, sort_key: str, limit: int) -> None:
    """Print a saved cpu profile."""
    import pstats

    from sigprof.logging import Icon, error

    try:
        stats = pstats.Stats(path, stream=click.get_text_stream("stdout"))
    except (TypeError, ValueError, EOFError) as e:
        error(f"Not a cpu profile: {path} ({e})", Icon.FAIL)
        raise SystemExit(1)

    try:
        stats.sort_stats(sort_key)
    except KeyError:
        error(f"Unknown sort key: {sort_key}", Icon.FAIL)
        raise SystemExit(1)
    stats.print_stats(limit)


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display effective configuration (file plus SIGPROF_* environment)."""
    from sigprof.config import Config

    cfg = Config.from_env()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[signals]")
    click.echo(f"  usr1 = {','.join(cfg.signals.usr1)}")
    click.echo(f"  usr2 = {','.join(cfg.signals.usr2)}")
    click.echo()
    click.echo("[output]")
    click.echo(f"  mode = {cfg.output.mode}")
    click.echo(f"  directory = {cfg.output.directory or '<temp dir>'}")
    click.echo()
    click.echo("[cpu]")
    click.echo(f"  duration = {cfg.cpu.duration}")
    click.echo()
    click.echo("[heap]")
    click.echo(f"  tracemalloc_frames = {cfg.heap.tracemalloc_frames}")
    click.echo(f"  top = {cfg.heap.top}")


@config.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
def config_init(force: bool) -> None:
    """Write the default configuration file."""
    from sigprof.config import Config

    cfg = Config()
    if cfg.config_path.exists() and not force:
        click.echo(f"Config already exists at {cfg.config_path} (use --force to overwrite)")
        return

    cfg.save()
    click.echo(f"Created default config at {cfg.config_path}")
