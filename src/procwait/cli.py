"""procwait CLI - wait for a command or a listening socket."""

import json
import logging
from dataclasses import asdict
from pathlib import Path

import click

from .api import wait_for_command, wait_for_socket
from .config import DEFAULT_CONFIG, Config, load_config, save_config
from .coordinator import USAGE_ERROR_STATUS
from .errors import ConfigError
from .logging import setup_logging


def _load_config_or_exit(ctx: click.Context) -> Config:
    try:
        return load_config()
    except ConfigError as e:
        click.echo(f"procwait: {e}", err=True)
        ctx.exit(USAGE_ERROR_STATUS)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Also log debug messages")
@click.pass_context
def cli(ctx, verbose):
    """Wait until a command succeeds or a socket starts listening.

    Exit status is 0 when the condition was met, 1 on timeout, guard
    process death or invocation limit, and 127 on invalid options.
    """
    config = _load_config_or_exit(ctx)
    ctx.obj = config
    log_path = Path(config.log_file) if config.log_file else None
    setup_logging(log_path, level=logging.DEBUG if verbose else logging.INFO)


@cli.command(name="cmd")
@click.argument("command")
@click.option("-t", "--timeout", type=str, help="Seconds before giving up (default from config, 120)")
@click.option("-p", "--pid", "guard_pid", type=str, help="Stop waiting if this process exits")
@click.option("-m", "--max-invocations", type=str, help="Maximum number of command runs")
@click.option("-d", "--delay", type=str, help="Seconds between command runs (default from config, 1)")
@click.option("-r", "--retval", "expected_result", type=str, default="0", help="Expected exit status")
@click.pass_context
def cmd(ctx, command, timeout, guard_pid, max_invocations, delay, expected_result):
    """Run COMMAND until it returns the expected exit status."""
    config = ctx.obj
    status = wait_for_command(
        command,
        timeout=config.timeout if timeout is None else timeout,
        guard_pid=guard_pid,
        max_invocations=max_invocations,
        delay=config.delay if delay is None else delay,
        expected_result=expected_result,
    )
    ctx.exit(status)


@cli.command(name="socket")
@click.argument("pattern")
@click.option("-t", "--timeout", type=str, help="Seconds before giving up (default from config, 120)")
@click.option("-p", "--pid", "guard_pid", type=str, help="Stop waiting if this process exits")
@click.pass_context
def socket_(ctx, pattern, timeout, guard_pid):
    """Wait until PATTERN (a port or UNIX socket path) is listening."""
    config = ctx.obj
    status = wait_for_socket(
        pattern,
        timeout=config.timeout if timeout is None else timeout,
        guard_pid=guard_pid,
    )
    ctx.exit(status)


@cli.command()
@click.option("--timeout", type=click.IntRange(min=0), help="Default timeout in seconds")
@click.option("--delay", type=click.FloatRange(min=0), help="Default delay between runs")
@click.option("--log-file", type=str, help="Also append log records to this file")
@click.option("--show", is_flag=True, help="Show config without modifying")
@click.option("--reset", is_flag=True, help="Reset to defaults")
@click.pass_context
def configure(ctx, timeout, delay, log_file, show, reset):
    """View or modify the default wait settings."""
    if reset:
        _save_or_exit(ctx, DEFAULT_CONFIG)
        click.echo("Configuration reset to defaults.")
        return

    config = ctx.obj

    if show or (timeout is None and delay is None and log_file is None):
        click.echo(json.dumps(asdict(config), indent=2))
        return

    config = Config(
        timeout=config.timeout if timeout is None else timeout,
        delay=config.delay if delay is None else delay,
        log_file=config.log_file if log_file is None else (log_file or None),
    )
    _save_or_exit(ctx, config)
    click.echo("Configuration updated.")


def _save_or_exit(ctx: click.Context, config: Config) -> None:
    try:
        save_config(config)
    except ConfigError as e:
        click.echo(f"procwait: {e}", err=True)
        ctx.exit(1)
