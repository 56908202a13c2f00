"""Proctored quiz session engine: timed attempts, integrity monitoring and one-shot submission."""

__version__ = "0.1.0"
