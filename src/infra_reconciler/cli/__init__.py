"""Command-line interface: ``infra-reconciler plan|apply|destroy|refresh|drift|graph|validate``."""

from __future__ import annotations

import logging
import os
import sys

import typer

from infra_reconciler import __version__

app = typer.Typer(
    name="infra-reconciler",
    help="Plan and converge declared infrastructure against live providers.",
    no_args_is_help=True,
    add_completion=False,
)

LOG_ENV_VAR = "RECONCILER_LOG"

# threadName tells executor workers apart.
_LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"
_LOG_DATEFMT = "%H:%M:%S"
_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"infra-reconciler {__version__}")
        raise typer.Exit


def _resolve_level(verbose: int) -> int | None:
    """Level for the package logger, or ``None`` to leave logging unconfigured.

    ``RECONCILER_LOG`` wins over ``-v`` flags. An unrecognised value falls
    back to INFO with a warning on stderr.
    """
    raw = os.environ.get(LOG_ENV_VAR, "").strip().upper()
    if raw:
        if raw not in _LEVELS:
            print(
                f"WARNING: invalid {LOG_ENV_VAR} level '{raw}', "
                f"expected one of {', '.join(sorted(_LEVELS))}; defaulting to INFO",
                file=sys.stderr,
            )
        return _LEVELS.get(raw, logging.INFO)
    if verbose <= 0:
        return None
    return logging.INFO if verbose == 1 else logging.DEBUG


def _configure_logging(verbose: int) -> None:
    """Route ``infra_reconciler`` logs to stderr; third-party loggers stay at WARNING."""
    level = _resolve_level(verbose)
    if level is None:
        return
    logging.basicConfig(
        level=logging.WARNING,
        format=_LOG_FORMAT,
        datefmt=_LOG_DATEFMT,
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("infra_reconciler").setLevel(level)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help=f"Increase log verbosity (-v info, -vv debug). {LOG_ENV_VAR} takes precedence.",
    ),
) -> None:
    """Declarative infrastructure reconciliation: plan and converge resources."""
    _ = version
    _configure_logging(verbose)


# Commands import the config layer lazily; register them once ``app`` exists.
from infra_reconciler.cli import commands as _commands  # noqa: E402, F401
