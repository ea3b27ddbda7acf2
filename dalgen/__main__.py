# File: dalgen/__main__.py
"""
DALGen - Module entry point.

Allows running the generator directly via::

    python -m dalgen generate design.yaml -o ./generated

This module simply delegates to the CLI entry point defined in ``dalgen.cli``.
"""

from __future__ import annotations


def main() -> None:
    """Delegate to the CLI main function."""
    from dalgen.cli import cli_main
    cli_main()


if __name__ == "__main__":
    main()
