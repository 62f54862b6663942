"""CLI application for aws-provisioner."""

from __future__ import annotations

import logging
import os
import sys

import typer

from aws_provisioner import __version__

app = typer.Typer(
    name="aws-provisioner",
    no_args_is_help=True,
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"aws-provisioner {__version__}")
        raise typer.Exit


_LOG_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"
_LOG_ENV = "AWS_PROVISIONER_LOG"
_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
# -vvv also shows the AWS SDK's own request logging.
_SDK_LOGGERS = ("boto3", "botocore", "urllib3")


def _level_from_env() -> int | None:
    name = os.environ.get(_LOG_ENV, "").upper()
    if not name:
        return None
    if name not in _VALID_LEVELS:
        print(
            f"WARNING: invalid {_LOG_ENV} level '{name}', "
            f"expected one of {', '.join(sorted(_VALID_LEVELS))}; defaulting to INFO",
            file=sys.stderr,
        )
        return logging.INFO
    return getattr(logging, name)


def _configure_logging(verbose: int) -> None:
    """Set up stdlib logging from ``-v`` flags or ``AWS_PROVISIONER_LOG``.

    With neither, logging stays unconfigured. The environment wins over
    the flags for the package logger; only ``-vvv`` opens up the SDK loggers.
    """
    level = _level_from_env()
    if level is None:
        if verbose <= 0:
            return
        level = logging.INFO if verbose == 1 else logging.DEBUG

    logging.basicConfig(
        level=logging.WARNING,
        format=_LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("aws_provisioner").setLevel(level)
    if verbose >= 3:
        for name in _SDK_LOGGERS:
            logging.getLogger(name).setLevel(logging.DEBUG)


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
        help="Increase log verbosity (-v info, -vv debug, -vvv debug including boto3).",
    ),
) -> None:
    """Terraform-style, dependency-ordered provisioning for AWS."""
    _ = version
    _configure_logging(verbose)


# Register commands after app is created to avoid circular imports.
from aws_provisioner.cli import commands as _commands  # noqa: E402, F401
