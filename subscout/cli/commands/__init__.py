"""Command modules registered by ``subscout.cli.main``."""
