#!/usr/bin/env python3
"""
Command-line entry point for SubScout.

Equivalent to the installed ``subscout`` console script.
"""

from subscout.cli import cli


if __name__ == '__main__':
    cli()
