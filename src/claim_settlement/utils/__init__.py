"""Shared utilities: retry/cancellation and payload sanitization."""
