"""Main entry point for the procwait CLI."""

import sys

import click

from .cli import cli
from .coordinator import USAGE_ERROR_STATUS


def main(args: list[str] | None = None) -> int:
    """
    Main entry point for the procwait CLI.

    Args:
        args: Command-line arguments. Defaults to sys.argv[1:]

    Returns:
        int: Exit code (0 met, 1 not met, 127 bad invocation)
    """
    try:
        status = cli.main(args=args, prog_name="procwait", standalone_mode=False)
    except click.UsageError as e:
        e.show()
        return USAGE_ERROR_STATUS
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.Abort:
        click.echo("Aborted!", err=True)
        return 1
    return status or 0


if __name__ == "__main__":
    sys.exit(main())
