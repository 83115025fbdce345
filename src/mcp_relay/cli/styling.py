"""CLI output styling utilities.

- Cyan bold for section headers
- Green for success messages (with checkmark)
- Red for error messages (with cross)
"""

from __future__ import annotations

__all__ = [
    "style_error",
    "style_header",
    "style_success",
]

import click


def style_header(title: str) -> str:
    """Style a section header with dashes.

    Example:
        >>> click.echo(style_header("Log shipping"))
        --- Log shipping ---
    """
    return click.style(f"--- {title} ---", fg="cyan", bold=True)


def style_success(message: str) -> str:
    return click.style(f"✓ {message}", fg="green")


def style_error(message: str) -> str:
    return click.style(f"✗ {message}", fg="red")
