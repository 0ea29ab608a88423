"""Pre-release validation pipeline for Cargo library crates."""

__version__ = "0.1.0"
