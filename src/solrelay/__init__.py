"""Solrelay - custodial SOL to token swap relay."""

__version__ = "0.1.0"
