"""Quiet-aware terminal output for the command line.

Sequence data always goes to stdout. Progress and warnings go to stderr and
are silenced by ``--quiet``; dropped identifiers are reported regardless.
"""

import click

_quiet_mode = False


def set_quiet_mode(quiet: bool) -> None:
    global _quiet_mode
    _quiet_mode = quiet


def is_quiet() -> bool:
    return _quiet_mode


def _write(message: str, err: bool, styled: bool, **kwargs) -> None:
    if _quiet_mode and not err:
        return
    if styled:
        click.secho(message, err=err, **kwargs)
    else:
        click.echo(message, err=err, **kwargs)


def echo(message: str = "", err: bool = False, **kwargs) -> None:
    """``click.echo`` that stays silent for stdout in quiet mode."""
    _write(message, err, False, **kwargs)


def secho(message: str = "", err: bool = False, **kwargs) -> None:
    _write(message, err, True, **kwargs)


def status(message: str = "", **kwargs) -> None:
    """Progress and summary lines on stderr; quiet mode drops them."""
    if not _quiet_mode:
        click.secho(message, err=True, **kwargs)


def report_dropped(dropped: dict) -> None:
    for identifier, reason in dropped.items():
        click.secho(f"Dropped {identifier}: {reason}", err=True, fg='yellow')
