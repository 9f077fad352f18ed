"""Configuration for the settlement pipeline."""
