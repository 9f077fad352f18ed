"""Resilient claim settlement pipeline."""

__version__ = "0.1.0"
