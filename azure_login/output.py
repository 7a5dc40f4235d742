"""Output formatters for human-readable and JSON output."""

import json
import sys
import traceback
from typing import Any

import click


def format_json(data: Any, success: bool = True) -> str:
    """Format data as JSON output."""
    if success:
        output = {"success": True, "data": data}
    else:
        output = data  # Error dict already has success: false
    return json.dumps(output, indent=2, default=str)


def format_error_json(
    error: Exception,
    error_type: str | None = None,
    help_text: str | None = None,
) -> str:
    """Format an error as JSON with helpful information."""
    return json.dumps(
        {
            "success": False,
            "error": {
                "type": error_type or type(error).__name__,
                "message": str(error),
                "traceback": traceback.format_exc(),
                "help": help_text or "",
            },
        },
        indent=2,
    )


def output_json(data: Any, success: bool = True) -> None:
    """Output data as JSON to stdout."""
    click.echo(format_json(data, success))


def output_error_json(
    error: Exception,
    error_type: str | None = None,
    help_text: str | None = None,
) -> None:
    """Output an error as JSON to stdout."""
    click.echo(format_error_json(error, error_type, help_text))
    sys.exit(1)


def output_human(message: str) -> None:
    """Output a human-readable message."""
    click.echo(message)


def output_error_human(error: Exception, help_text: str | None = None) -> None:
    """Output an error in human-readable format."""
    click.secho(f"Error: {error}", fg="red", err=True)
    if help_text:
        click.echo(f"\n{help_text}", err=True)
    sys.exit(1)


class OutputHandler:
    """Handles output formatting based on mode (JSON or human)."""

    def __init__(self, json_mode: bool = False):
        self.json_mode = json_mode

    def success(self, data: Any, human_message: str | None = None) -> None:
        """Output success response."""
        if self.json_mode:
            output_json(data)
        else:
            if human_message:
                output_human(human_message)
            else:
                output_human(json.dumps(data, indent=2, default=str))

    def error(
        self,
        error: Exception,
        error_type: str | None = None,
        help_text: str | None = None,
    ) -> None:
        """Output error response."""
        if self.json_mode:
            output_error_json(error, error_type, help_text)
        else:
            output_error_human(error, help_text)

    def progress(self, message: str) -> None:
        """Report login progress on stderr so stdout stays parseable."""
        if self.json_mode:
            click.echo(message, err=True)
        else:
            click.secho(message, fg="cyan", err=True)
